import uuid

SHORT_ID_LENGTH = 8


def generate_id() -> str:
    return str(uuid.uuid4())


def short_id(value: str) -> str:
    return value[:SHORT_ID_LENGTH]
