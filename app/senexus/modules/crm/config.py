from app.senexus.models import FirmRole
from app.senexus.modules.manifest import ModuleManifest, ModuleRoute

_MEMBERS = (FirmRole.OWNER, FirmRole.ADMIN, FirmRole.MANAGER, FirmRole.STAFF)

CRM_MANIFEST = ModuleManifest(
    slug="crm",
    name="CRM",
    description="Gestion des clients et relations commerciales",
    version="1.0.0",
    icon="building",
    base_path="/crm",
    is_system=False,
    permitted_roles=_MEMBERS,
    routes=(
        ModuleRoute("", "Tableau de bord", "dashboard"),
        ModuleRoute("clients", "Clients", "building", _MEMBERS),
        ModuleRoute("reports", "Rapports", "post", (FirmRole.OWNER, FirmRole.ADMIN)),
    ),
    metadata={"color": "#8b5cf6", "category": "Sales"},
)
