import pytest
from unittest.mock import MagicMock
from services.client_library_import import FUNCTION_NAME, import_client_library, split_csv_for_upload
from services.exceptions import DataProcessingError, ImportValidationError
from services.functions_client import FunctionResult


def _csv(rows):
    return "\n".join(["name,email"] + [f"Client {i},c{i}@example.com" for i in range(rows)])


@pytest.fixture
def client():
    mock = MagicMock()
    mock.invoke.return_value = FunctionResult(data={"created": 3, "updated": 0, "skipped": 0, "errors": []})
    return mock


def test_small_file_is_one_chunk():
    chunks = split_csv_for_upload(_csv(100))
    assert len(chunks) == 1
    assert chunks[0].splitlines()[0] == "name,email"


def test_large_file_header_only_on_first_chunk():
    chunks = split_csv_for_upload(_csv(450))

    assert [len(c.splitlines()) for c in chunks] == [201, 200, 50]
    assert chunks[0].startswith("name,email\n")
    assert not chunks[1].startswith("name,email")
    assert sum(len(c.splitlines()) for c in chunks) - 1 == 450


def test_blank_lines_are_ignored():
    assert split_csv_for_upload("name,email\n\nA,a@x\n   \n") == ["name,email\nA,a@x"]


def test_header_only_is_rejected():
    with pytest.raises(ImportValidationError):
        split_csv_for_upload("name,email\n")


def test_small_file_goes_in_a_single_import_call(client):
    summary = import_client_library(client, _csv(3), "generic", user_id="u1")

    client.invoke.assert_called_once_with(FUNCTION_NAME, {
        "format": "generic",
        "user_id": "u1",
        "action": "import",
        "csv_data": _csv(3),
    })
    assert summary["created"] == 3


def test_large_file_is_uploaded_in_parts_then_imported(client):
    progress = MagicMock()

    import_client_library(client, _csv(450), "generic", progress=progress)

    bodies = [c.args[1] for c in client.invoke.call_args_list]
    assert [b["action"] for b in bodies] == ["upload", "upload", "upload", "import"]
    assert [b.get("append") for b in bodies[:3]] == [False, True, True]
    assert "csv_data" not in bodies[3]
    progress.assert_called_with("Import finished", 100)


def test_backend_error_is_raised_verbatim(client):
    client.invoke.side_effect = [
        FunctionResult(data={"ok": True}),
        FunctionResult(error="Error 500: storage quota exceeded"),
    ]

    with pytest.raises(DataProcessingError) as exc:
        import_client_library(client, _csv(450), "generic")

    assert exc.value.message == "Error 500: storage quota exceeded"
    assert client.invoke.call_count == 2


def test_format_is_required(client):
    with pytest.raises(ImportValidationError):
        import_client_library(client, _csv(3), "")
    client.invoke.assert_not_called()
