"""Tests for the CSV task table and TaskStore."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskloop.errors import (
    CycleDetectedError,
    DuplicateTaskNumberError,
    InvalidTransitionError,
    MissingDependencyError,
    ParseError,
    StoreIOError,
    TaskCountMismatch,
    TaskNotFoundError,
)
from taskloop.io_utils import read_text, write_text
from taskloop.plan import PlanItem
from taskloop.tasks.io import dump_task_table, parse_task_table
from taskloop.tasks.model import Complexity, Phase
from taskloop.tasks.store import TaskStore

HEADER = "number,title,status,dependencies,estimated_hours,complexity,notes\n"


def _csv(*rows: str, header: str = HEADER) -> str:
    return header + "".join(r + "\n" for r in rows)


# ═══════════════════════════════════════════════════════════════════
#  CSV parsing
# ═══════════════════════════════════════════════════════════════════


class TestParseTaskTable:
    def test_basic_rows(self):
        table = parse_task_table(_csv(
            "1.1,Setup,done,,2,low,",
            '1.2,Login,pending,"1.1",3.5,high,needs review',
        ))
        t1, t2 = table.tasks
        assert t1.phase is Phase.DONE
        assert t1.estimated_hours == 2
        assert t1.complexity is Complexity.LOW
        assert t2.dependencies == ["1.1"]
        assert t2.estimated_hours == 3.5
        assert t2.notes == "needs review"

    def test_quoted_multi_dependency_and_title_with_comma(self):
        table = parse_task_table(_csv(
            "1.1,A,pending,,,medium,",
            "1.2,B,pending,,,medium,",
            '2.1,"Wire up A, B",pending,"1.1, 1.2",,medium,',
        ))
        t = table.get("2.1")
        assert t.title == "Wire up A, B"
        assert t.dependencies == ["1.1", "1.2"]

    def test_phase_column_restores_refined_phase(self):
        header = HEADER.rstrip("\n") + ",phase\n"
        table = parse_task_table(_csv(
            "1.1,A,in-progress,,,medium,,tests-written",
            header=header,
        ))
        assert table.get("1.1").phase is Phase.TESTS_WRITTEN

    def test_phase_derived_from_status_without_column(self):
        table = parse_task_table(_csv("1.1,A,in-progress,,,medium,"))
        assert table.get("1.1").phase is Phase.IN_PROGRESS

    def test_blank_rows_skipped(self):
        table = parse_task_table(_csv("1.1,A,pending,,,medium,", ",,,,,,"))
        assert table.numbers() == ["1.1"]

    @pytest.mark.parametrize(
        "row,needle",
        [
            ("1,A,pending,,,medium,", "invalid task number"),
            ("1.1,,pending,,,medium,", "missing a title"),
            ("1.1,A,blocked,,,medium,", "invalid status"),
            ("1.1,A,pending,x.y,,medium,", "invalid dependency"),
            ("1.1,A,pending,1.1,,medium,", "depends on itself"),
            ("1.1,A,pending,,lots,medium,", "not a number"),
            ("1.1,A,pending,,-1,medium,", ">= 0"),
            ("1.1,A,pending,,nan,medium,", "finite"),
            ("1.1,A,pending,,inf,medium,", "finite"),
            ("1.1,A,pending,,,extreme,", "invalid complexity"),
            ("1.1,A,pending,,,medium,,extra", "more cells"),
        ],
    )
    def test_malformed_row(self, row, needle):
        with pytest.raises(ParseError, match=needle) as exc:
            parse_task_table(_csv(row))
        assert exc.value.line == 2

    def test_missing_column(self):
        with pytest.raises(ParseError, match="complexity"):
            parse_task_table("number,title,status,dependencies,estimated_hours,notes\n")

    def test_phase_contradicting_status(self):
        header = HEADER.rstrip("\n") + ",phase\n"
        with pytest.raises(ParseError, match="contradicts"):
            parse_task_table(_csv("1.1,A,pending,,,medium,,refactored", header=header))


class TestDumpTaskTable:
    def test_roundtrip_preserves_rows(self, make_task, make_table):
        table = make_table([
            make_task("1.2", title='Say "hi", then leave', dependencies=["1.1"], estimated_hours=1.5),
            make_task("1.1", phase=Phase.REFACTORED, notes="[blocked: x]", estimated_hours=4),
        ])
        text = dump_task_table(table)
        again = parse_task_table(text)
        assert again == table
        assert dump_task_table(again) == text

    def test_integral_hours_written_without_decimal(self, make_task, make_table):
        text = dump_task_table(make_table([make_task("1.1", estimated_hours=3.0)]))
        assert "1.1,Task 1.1,pending,,3,medium,,pending" in text


# ═══════════════════════════════════════════════════════════════════
#  TaskStore
# ═══════════════════════════════════════════════════════════════════


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    path = tmp_path / "tasks.csv"
    write_text(path, _csv(
        "1.1,Setup,done,,1,low,",
        "1.2,Login,pending,1.1,2,medium,",
        "2.1,Logout,pending,1.2,,medium,",
    ))
    return path


class TestTaskStoreLoadSave:
    def test_load(self, store_path):
        table = TaskStore(store_path).load()
        assert table.numbers() == ["1.1", "1.2", "2.1"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(StoreIOError):
            TaskStore(tmp_path / "nope.csv").load()

    def test_load_rejects_missing_dependency(self, tmp_path):
        path = tmp_path / "tasks.csv"
        write_text(path, _csv("1.1,A,pending,9.9,,medium,"))
        with pytest.raises(MissingDependencyError):
            TaskStore(path).load()

    def test_load_rejects_cycle(self, tmp_path):
        path = tmp_path / "tasks.csv"
        write_text(path, _csv("1.1,A,pending,1.2,,medium,", "1.2,B,pending,1.1,,medium,"))
        with pytest.raises(CycleDetectedError):
            TaskStore(path).load()

    def test_load_rejects_duplicates(self, tmp_path):
        path = tmp_path / "tasks.csv"
        write_text(path, _csv("1.1,A,pending,,,medium,", "1.1,B,pending,,,medium,"))
        with pytest.raises(DuplicateTaskNumberError):
            TaskStore(path).load()

    def test_load_rejects_two_in_flight(self, tmp_path):
        path = tmp_path / "tasks.csv"
        write_text(path, _csv("1.1,A,in-progress,,,medium,", "1.2,B,in-progress,,,medium,"))
        with pytest.raises(ParseError, match="more than one task in progress"):
            TaskStore(path).load()

    def test_save_then_reload(self, store_path):
        store = TaskStore(store_path)
        store.load()
        store.update_status("1.2", Phase.IN_PROGRESS)
        store.update_status("1.2", Phase.TESTS_WRITTEN)
        store.save()

        again = TaskStore(store_path).load()
        assert again.get("1.2").phase is Phase.TESTS_WRITTEN
        assert "in-progress" in read_text(store_path)

    def test_free_text_survives_save_and_load(self, tmp_path, make_task, make_table):
        task = make_task("1.1", title="  Setup, again ", notes="found issue:\n  - see log\n")
        path = tmp_path / "tasks.csv"
        TaskStore(path).save(make_table([task]))

        back = TaskStore(path).load().get("1.1")

        assert back == task
        assert back.notes == "found issue:\n  - see log\n"

    def test_save_leaves_no_temp_files(self, store_path):
        store = TaskStore(store_path)
        store.load()
        store.save()
        assert sorted(p.name for p in store_path.parent.iterdir()) == ["tasks.csv"]


class TestTaskStoreMutations:
    def test_update_status_forward_only(self, store_path):
        store = TaskStore(store_path)
        store.load()
        with pytest.raises(InvalidTransitionError):
            store.update_status("1.2", Phase.TESTS_WRITTEN)
        with pytest.raises(InvalidTransitionError):
            store.update_status("1.1", Phase.PENDING)
        assert store.get("1.2").phase is Phase.PENDING

    def test_second_in_flight_rejected(self, store_path):
        store = TaskStore(store_path)
        store.load()
        store.update_status("1.2", Phase.IN_PROGRESS)
        store.get("2.1").dependencies = []
        with pytest.raises(InvalidTransitionError, match="already in progress"):
            store.update_status("2.1", Phase.IN_PROGRESS)

    def test_get_unknown(self, store_path):
        store = TaskStore(store_path)
        store.load()
        with pytest.raises(TaskNotFoundError):
            store.get("9.9")

    def test_append(self, store_path, make_task):
        store = TaskStore(store_path)
        store.load()
        store.append(make_task("3.1"))
        assert store.table.numbers()[-1] == "3.1"
        with pytest.raises(DuplicateTaskNumberError):
            store.append(make_task("3.1"))
        with pytest.raises(ValueError):
            store.append(make_task("3"))

    def test_blocked_marker(self, store_path):
        store = TaskStore(store_path)
        store.load()
        store.mark_blocked("1.2", "tests fail")
        assert store.get("1.2").blocked_reason == "tests fail"
        assert store.clear_blocked("1.2") is True
        assert store.clear_blocked("1.2") is False
        assert store.get("1.2").notes == ""


class TestTaskStorePlan:
    def test_initialize_from_plan(self, tmp_path):
        store = TaskStore(tmp_path / "tasks.csv")
        table = store.initialize([
            PlanItem("1.1", "A"),
            PlanItem("1.2", "B", dependencies=["1.1"], estimated_hours=2, complexity=Complexity.HIGH),
        ])
        assert all(t.phase is Phase.PENDING for t in table.tasks)
        assert table.get("1.2").complexity is Complexity.HIGH
        assert not store.exists()

    def test_initialize_rejects_bad_plan(self, tmp_path):
        store = TaskStore(tmp_path / "tasks.csv")
        with pytest.raises(MissingDependencyError):
            store.initialize([PlanItem("1.1", "A", dependencies=["0.1"])])

    def test_check_against_count_mismatch(self, store_path):
        store = TaskStore(store_path)
        store.load()
        with pytest.raises(TaskCountMismatch) as exc:
            store.check_against([PlanItem("1.1", "A"), PlanItem("1.2", "B")])
        assert exc.value.document_count == 2
        assert exc.value.store_count == 3

    def test_check_against_number_mismatch(self, store_path):
        store = TaskStore(store_path)
        store.load()
        with pytest.raises(TaskCountMismatch, match="only in plan: 3.1; only in store: 2.1"):
            store.check_against([PlanItem("1.1", "A"), PlanItem("1.2", "B"), PlanItem("3.1", "C")])

    def test_check_against_ok(self, store_path):
        store = TaskStore(store_path)
        store.load()
        store.check_against([PlanItem("2.1", "C"), PlanItem("1.1", "A"), PlanItem("1.2", "B")])
