import pytest
from sqlalchemy import func, select

from auth import issue_session_token
from models import Category, Profile, User
from schemas import SignInIn, SignUpIn
from services import DEFAULT_CATEGORIES, IdentityService, ProvisioningService


def _sign_up(session, email: str = "ada@example.com") -> User:
    return IdentityService(session).sign_up(
        SignUpIn(email=email, password="s3cret!", full_name="Ada Lovelace")
    )


def _category_count(session, user_id: int) -> int:
    return session.scalar(
        select(func.count(Category.id)).where(Category.user_id == user_id)
    )


def test_sign_up_provisions_profile_and_system_categories(session) -> None:
    user = _sign_up(session, " Ada@Example.com ")

    assert user.email == "ada@example.com"
    assert user.password_hash != "s3cret!"
    profile = session.scalar(select(Profile).where(Profile.user_id == user.id))
    assert profile.full_name == "Ada Lovelace"
    assert profile.currency_code == "USD"

    categories = session.scalars(
        select(Category).where(Category.user_id == user.id)
    ).all()
    assert len(categories) == len(DEFAULT_CATEGORIES) == 8
    assert all(c.is_system for c in categories)
    by_name = {c.name: c for c in categories}
    assert by_name["Salary"].type.value == "income"
    assert by_name["Healthcare"].color == "#14B8A6"


def test_provisioning_is_idempotent(session) -> None:
    user = _sign_up(session)
    first = session.scalar(select(Profile).where(Profile.user_id == user.id))

    again = ProvisioningService(session, user.id).provision("Someone Else")

    assert again.id == first.id
    assert again.full_name == "Ada Lovelace"
    assert _category_count(session, user.id) == 8


def test_duplicate_email_is_rejected(session) -> None:
    _sign_up(session)
    with pytest.raises(ValueError, match="already registered"):
        _sign_up(session)
    assert session.scalar(select(func.count(User.id))) == 1


def test_sign_in_and_sign_out(session) -> None:
    user = _sign_up(session)
    identity = IdentityService(session)

    with pytest.raises(ValueError, match="Invalid credentials"):
        identity.sign_in(SignInIn(email="ada@example.com", password="wrong"))

    token = identity.sign_in(SignInIn(email="ADA@example.com", password="s3cret!"))
    assert identity.current_user_id(token) == user.id

    identity.sign_out(token)
    assert identity.current_user_id(token) is None


def test_tokens_must_be_signed_and_known(session) -> None:
    user = _sign_up(session)
    identity = IdentityService(session)

    assert identity.current_user_id(None) is None
    assert identity.current_user_id("not-a-token") is None
    # Correctly signed but never issued by sign-in.
    assert identity.current_user_id(issue_session_token(user.id, "forged")) is None
