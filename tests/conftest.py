import pytest


@pytest.fixture
def users() -> list[dict]:
    return [
        {"id": 1, "name": "Alice", "role": "admin", "age": 34},
        {"id": 2, "name": "Bob", "role": "editor", "age": 18},
        {"id": 3, "name": "Charlie", "role": "viewer", "age": None},
        {"id": 4, "name": "Dalia", "role": "admin", "age": 30},
        {"id": 5, "name": "Ed", "role": None, "age": 51},
        {"id": 6, "name": None, "role": "viewer", "age": 30},
    ]
