from portal.exceptions import ValidationError

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 20


def validate_name(name) -> bool:
    """Workload names are 3 to 20 characters"""
    return isinstance(name, str) and NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH


def require_name(name, field: str = 'name') -> str:
    if not validate_name(name):
        raise ValidationError(
            f"Invalid {field}. Must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters.",
            "INVALID_NAME"
        )
    return name


def require_distinct_names(names) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise ValidationError(f"Name '{name}' is used more than once", "DUPLICATE_NAME")
        seen.add(name)


def parse_bool(value, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    raise ValidationError(f"Invalid {field}. Must be true or false.", "INVALID_FIELD_TYPE")
