# Import models here so Alembic can discover metadata.
from app.models.user import User  # noqa: F401

# Workspaces, seats, hiring
from app.models.workspace import Workspace  # noqa: F401
from app.models.workspace_membership import WorkspaceMembership  # noqa: F401
from app.models.job import Job  # noqa: F401

# Deals and signing
from app.models.deal import Deal  # noqa: F401
from app.models.contract import Contract, ContractSignature  # noqa: F401

# Settlement and payouts
from app.models.commission import Commission  # noqa: F401
from app.models.salary_payment import SalaryPayment  # noqa: F401
from app.models.notification import Notification  # noqa: F401
