from dataclasses import dataclass


@dataclass
class SuperAdminContext:
    """Identity context for operator requests against the admin surface."""
    super_admin_id: str
    email: str
