"""Marketplace accounts and supplier profiles."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradelink.data.schema import MembershipTier, PayoutMethod, SupplierProfile, User, UserRole
from tradelink.infrastructure.logging_config import get_logger
from tradelink.models.config import get_settings
from tradelink.services.errors import ConflictError, NotFoundError, ValidationError

logger = get_logger(__name__)


class AccountService:
    """Create and look up users and supplier profiles."""

    def __init__(self, session: Session):
        self.session = session

    def create_user(
        self,
        email: str,
        name: str,
        role: UserRole | str,
        business_name: str | None = None,
        membership_tier: MembershipTier | str = MembershipTier.FREE,
    ) -> User:
        """Create a user; suppliers also get a profile with the default credit limit."""
        role = UserRole(role)
        email = email.strip().lower()
        if self.session.scalar(select(User).where(User.email == email)) is not None:
            raise ConflictError(f"User with email {email} already exists")

        user = User(email=email, name=name, role=role.value)
        self.session.add(user)
        self.session.flush()

        if role == UserRole.SUPPLIER:
            profile = SupplierProfile(
                user_id=user.id,
                business_name=business_name or name,
                membership_tier=MembershipTier(membership_tier).value,
                commission_credit_limit=get_settings().default_credit_limit,
                is_restricted=False,
            )
            self.session.add(profile)
            self.session.flush()

        logger.info("user_created", user_id=user.id, role=role.value)
        return user

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def get_user_with_role(self, user_id: int, role: UserRole) -> User:
        """Fetch a user and check the role, e.g. a mediator must be an admin."""
        user = self.get_user(user_id)
        if user.role != role.value:
            raise ValidationError(f"User {user_id} is not a {role.value}")
        return user

    def get_supplier_profile(self, supplier_id: int) -> SupplierProfile:
        profile = self.session.get(SupplierProfile, supplier_id)
        if profile is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")
        return profile

    def list_users(self, role: UserRole | None = None, limit: int = 100, offset: int = 0) -> list[User]:
        stmt = select(User)
        if role is not None:
            stmt = stmt.where(User.role == UserRole(role).value)
        return list(self.session.scalars(stmt.order_by(User.id).limit(limit).offset(offset)))

    def update_supplier_profile(
        self,
        supplier_id: int,
        business_name: str | None = None,
        membership_tier: MembershipTier | str | None = None,
        bank_name: str | None = None,
        account_number: str | None = None,
        paypal_email: str | None = None,
    ) -> SupplierProfile:
        """Update tier and payout details; ``None`` leaves a field unchanged."""
        profile = self.get_supplier_profile(supplier_id)
        if business_name is not None:
            profile.business_name = business_name
        if membership_tier is not None:
            profile.membership_tier = MembershipTier(membership_tier).value
        if bank_name is not None:
            profile.bank_name = bank_name
        if account_number is not None:
            profile.account_number = account_number
        if paypal_email is not None:
            profile.paypal_email = paypal_email
        self.session.flush()
        return profile


def payout_destination(profile: SupplierProfile, method: PayoutMethod | str) -> dict[str, str]:
    """Return the supplier's payout details for a method or raise if incomplete."""
    method = PayoutMethod(method)
    if method == PayoutMethod.BANK_TRANSFER:
        if not profile.bank_name or not profile.account_number:
            raise ValidationError("Bank details are incomplete", code="MISSING_PAYOUT_DETAILS")
        return {"bank_name": profile.bank_name, "account_number": profile.account_number}
    if method == PayoutMethod.PAYPAL:
        if not profile.paypal_email:
            raise ValidationError("PayPal email is missing", code="MISSING_PAYOUT_DETAILS")
        return {"paypal_email": profile.paypal_email}
    return {"supplier_id": str(profile.user_id)}
