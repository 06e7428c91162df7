from apps.utils.exceptions import Unauthenticated, Forbidden


def is_authenticated(user):
    return user is not None and getattr(user, "is_authenticated", False)


def is_admin(user):
    """
    Administrator capability. Staff flag is the single source of truth.
    """
    return is_authenticated(user) and bool(user.is_staff)


def is_owner(user, obj):
    return is_authenticated(user) and obj.user_id == user.pk


def require_user(user):
    if not is_authenticated(user):
        raise Unauthenticated()
    return user


def require_admin(user):
    require_user(user)
    if not is_admin(user):
        raise Forbidden("Administrator access required.")
    return user


def require_owner_or_admin(user, obj):
    require_user(user)
    if not (is_owner(user, obj) or is_admin(user)):
        raise Forbidden()
    return user
