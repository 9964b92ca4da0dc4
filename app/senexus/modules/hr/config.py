from app.senexus.models import FirmRole
from app.senexus.modules.manifest import ModuleManifest, ModuleRoute

_MANAGERS = (FirmRole.OWNER, FirmRole.ADMIN, FirmRole.MANAGER)
_ADMINS = (FirmRole.OWNER, FirmRole.ADMIN)

HR_MANIFEST = ModuleManifest(
    slug="hr",
    name="Ressources Humaines",
    description="Gestion complète des employés intérimaires et RH",
    version="2.0.0",
    icon="users",
    base_path="/hr",
    is_system=True,
    permitted_roles=_MANAGERS,
    routes=(
        ModuleRoute("", "Tableau de bord", "dashboard"),
        ModuleRoute("employees", "Employés", "users", _MANAGERS),
        ModuleRoute("contracts", "Contrats", "post", _MANAGERS),
        ModuleRoute("transfers", "Transferts", "arrowRightLeft", _MANAGERS),
        ModuleRoute("leaves", "Congés", "calendar", _MANAGERS),
        ModuleRoute("absences", "Absences", "userX", _MANAGERS),
        ModuleRoute("missions", "Missions", "briefcase", _MANAGERS),
        ModuleRoute("documents", "Documents", "folderOpen", _MANAGERS),
        ModuleRoute("payroll", "Paie", "dollarSign", _ADMINS),
        ModuleRoute("departments", "Départements", "building", _ADMINS),
    ),
    metadata={
        "color": "#3b82f6",
        "category": "Operations",
        "compliance": {"country": "Senegal", "maxInterimDuration": 730, "annualLeaveDays": 20},
    },
)
