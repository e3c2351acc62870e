def get_current_business(user):
    """
    Return the Business (tenant) owned by this user, or None.

    Each user owns at most one Business; every CFDI operation is scoped to it.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return None
    from .models import Business  # local import to avoid circular deps

    return Business.objects.filter(owner_user=user).order_by("id").first()
