from __future__ import annotations

import pytest

from livescreen.models.subtest import Subtest
from livescreen.settings import settings
from livescreen.utils.subtest_loader import CatalogError, discover_subtests, import_all, import_subtest_file

PHONICS = """
meta:
  code: TEST_PH
  name: Test Phonics
  module_type: phonics
  grade: 1
items:
  - text: cat
  - dog
"""


def write(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return path


def test_bundled_catalog_imports_cleanly(db):
    result = import_all(db, settings.catalog_dir)
    assert result["errors"] == {}
    assert result["count"] == 6
    assert sorted(result["imported"]) == sorted(
        ["ORF_G2_A", "PHONICS_CVC", "HFW_G1", "PA_RHYME", "PRINT_CONCEPTS", "COMP_G2"]
    )

    orf = db.get(Subtest, "ORF_G2_A")
    assert orf.duration_seconds == 60
    assert orf.total_items == 1
    assert orf.script_prompt


def test_import_file(db, tmp_path):
    sid = import_subtest_file(db, write(tmp_path, "ph.yaml", PHONICS))
    subtest = db.get(Subtest, sid)
    assert sid == "TEST_PH"
    assert subtest.grade == "1"
    assert subtest.item_count == 2
    assert subtest.stimulus_data == {"items": [{"text": "cat"}, "dog"]}
    assert subtest.timing_config is None


def test_reimport_updates_in_place(db, tmp_path):
    path = write(tmp_path, "ph.yaml", PHONICS)
    import_subtest_file(db, path)
    write(tmp_path, "ph.yaml", PHONICS.replace("Test Phonics", "Renamed").replace("  - dog\n", ""))
    import_subtest_file(db, path)

    rows = db.query(Subtest).all()
    assert len(rows) == 1
    assert rows[0].name == "Renamed"
    assert rows[0].item_count == 1


@pytest.mark.parametrize(
    "body",
    [
        "meta: {code: X, name: X}\nitems: []\n",
        "meta: {code: X, name: X, module_type: spelling}\nitems: []\n",
        "meta: {code: X, name: X, module_type: hfw, modality: written}\nitems: []\n",
        "meta: {code: X, name: X, module_type: hfw, order_index: first}\nitems: []\n",
        "meta: {code: X, name: X, module_type: hfw}\n",
        "meta: {code: X, name: X, module_type: hfw}\nitems: {a: 1}\n",
        "meta: {code: X, name: X, module_type: hfw}\nitems: [[1, 2]]\n",
        "meta: {code: X, name: X, module_type: orf}\nitems: []\ntiming: {duration_seconds: 0}\n",
        "- just\n- a list\n",
        "meta: [unclosed\n",
    ],
)
def test_malformed_files_are_rejected(db, tmp_path, body):
    with pytest.raises(CatalogError):
        import_subtest_file(db, write(tmp_path, "bad.yaml", body))


def test_import_all_collects_errors(db, tmp_path):
    write(tmp_path, "good.yaml", PHONICS)
    write(tmp_path, "bad.yml", "meta: {code: X}\nitems: []\n")
    write(tmp_path, "notes.txt", "ignored")

    assert [p.name for p in discover_subtests(tmp_path)] == ["bad.yml", "good.yaml"]
    result = import_all(db, tmp_path)
    assert result["imported"] == ["TEST_PH"]
    assert list(result["errors"]) == [str(tmp_path / "bad.yml")]

    with pytest.raises(CatalogError):
        import_all(db, tmp_path, stop_on_error=True)


def test_missing_catalog_dir(db, tmp_path):
    assert import_all(db, tmp_path / "absent")["count"] == 0
