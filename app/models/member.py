def membership_id(apartment_id: str, user_id: str) -> str:
    """Membership rows are keyed by apartment and user."""
    return f"{apartment_id}_{user_id}"
