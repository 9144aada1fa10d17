"""
Unit tests for submission export.
"""
import io
import json
import pytest
from openpyxl import load_workbook
from kobo_insights.core.errors import AnalysisError
from kobo_insights.core.schemas import Dataset
from kobo_insights.services.exporter import (
    build_table,
    export_columns,
    export_dataset,
    is_exportable_by_default,
)


@pytest.fixture
def dataset():
    records = [
        {"_id": 1, "region": "Amhara", "yield": 0, "photo_url": "https://x/1.jpg",
         "tags": ["a", "b"], "meta/instanceID": "uuid:1"},
        {"_id": 2, "region": "ጎንደር", "yield": 12},
    ]
    return Dataset(
        dataset_id="farm",
        name="Farm Survey",
        records=records,
        available_columns=["_id", "region", "yield", "photo_url", "tags", "meta/instanceID"],
    )


@pytest.mark.unit
@pytest.mark.parametrize("column, exported", [
    ("region", True),
    ("_id", False),
    ("meta/instanceID", False),
    ("photo_url", False),
    ("download_auth", False),
    ("image_original", False),
    ("audio_processed", False),
    ("group/household_size", True),
])
def test_default_export_filter(column, exported):
    assert is_exportable_by_default(column) is exported


@pytest.mark.unit
def test_export_columns(dataset):
    assert export_columns(dataset) == ["region", "yield", "tags"]
    assert export_columns(dataset, include_all_columns=True) == dataset.available_columns

    dataset.selected_columns = ["yield", "_id"]
    assert export_columns(dataset) == ["yield", "_id"]


@pytest.mark.unit
def test_build_table(dataset):
    table = build_table(dataset.records, ["region", "tags", "missing"])

    assert list(table.columns) == ["No.", "region", "tags", "missing"]
    assert list(table["No."]) == [1, 2]
    assert table["tags"][0] == '["a", "b"]'
    assert table["tags"][1] == ""
    assert table["missing"][0] == ""


@pytest.mark.unit
def test_csv_export(dataset):
    exported = export_dataset(dataset, "csv")

    assert exported.filename == "Farm_Survey_data.csv"
    assert exported.media_type.startswith("text/csv")
    assert exported.content.startswith(b"\xef\xbb\xbf")

    lines = exported.content.decode("utf-8-sig").splitlines()
    assert lines[0] == "No.,region,yield,tags"
    assert lines[1] == '1,Amhara,0,"[""a"", ""b""]"'
    assert lines[2] == "2,ጎንደር,12,"


@pytest.mark.unit
def test_excel_export(dataset):
    exported = export_dataset(dataset, "EXCEL", include_all_columns=True)

    assert exported.filename == "Farm_Survey_data.xlsx"
    workbook = load_workbook(io.BytesIO(exported.content))
    sheet = workbook.active

    assert sheet.title == "Farm_Survey"
    assert sheet.freeze_panes == "A2"
    header = [cell.value for cell in sheet[1]]
    assert header == ["No.", "_id", "region", "yield", "photo_url", "tags", "meta/instanceID"]
    assert all(cell.font.bold for cell in sheet[1])
    assert [cell.value for cell in sheet[2]][:4] == [1, 1, "Amhara", 0]
    assert sheet.max_row == 3


@pytest.mark.unit
def test_json_export(dataset):
    exported = export_dataset(dataset, "json")
    rows = json.loads(exported.content)

    assert exported.filename == "Farm_Survey_data.json"
    assert rows[0] == {"No": 1, "region": "Amhara", "yield": 0, "tags": '["a", "b"]'}
    assert rows[1]["region"] == "ጎንደር"


@pytest.mark.unit
def test_unsupported_format(dataset):
    with pytest.raises(ValueError):
        export_dataset(dataset, "pdf")


@pytest.mark.unit
def test_export_without_records(dataset):
    dataset.records = []
    with pytest.raises(AnalysisError):
        export_dataset(dataset, "csv")


@pytest.mark.unit
def test_unnamed_project_filename(dataset):
    dataset.name = "///"
    assert export_dataset(dataset, "csv").filename == "export_data.csv"
