import pytest

from iqra.history import HistoryRecorder, score_answers
from iqra.local_store import HISTORY_KEY
from iqra.schemas import CloudConfig, ExamMode

from conftest import FakeMirror, make_exam, GOOD_CONFIG


@pytest.mark.parametrize(
    "correct,total,expected",
    [(5, 5, 100), (0, 5, 0), (3, 5, 60), (1, 8, 13), (2, 3, 67), (1, 3, 33)],
)
def test_score_rounds_half_up(correct: int, total: int, expected: int) -> None:
    exam = make_exam(questions=total)
    answers = {qid: 0 for qid in range(1, correct + 1)}
    assert score_answers(exam, answers) == (correct, total, expected)


def test_unanswered_questions_count_as_incorrect() -> None:
    exam = make_exam(questions=4)
    assert score_answers(exam, {1: 0, 2: 1})[2] == 25


async def test_record_prepends_and_persists(gateway, history: HistoryRecorder) -> None:
    exam = make_exam(level=2, questions=4, sections=2)
    first = await history.record(exam, {1: 0, 2: 0, 3: 0, 4: 0}, "Sara", ExamMode.TIMED, "en")
    second = await history.record(exam, {1: 1}, "Omar", ExamMode.UNTIMED, "ar")

    assert [r.id for r in history.history] == [second.id, first.id]
    assert first.id != second.id
    assert first.score == 100 and first.total_questions == 4
    assert second.score == 0

    stored = gateway.load(HISTORY_KEY)
    assert len(stored) == 2
    assert stored[0]["studentName"] == "Omar"
    assert stored[0]["mode"] == "UNTIMED"


async def test_details_follow_section_order(history: HistoryRecorder) -> None:
    exam = make_exam(questions=3, sections=2)
    result = await history.record(exam, {1: 0, 3: 2}, "Sara", ExamMode.TIMED, "ar")

    assert [d.question_text for d in result.details] == ["Question 1", "Question 2", "Question 3"]
    assert [d.is_correct for d in result.details] == [True, False, False]
    assert result.details[1].user_answer == "لم يجب"
    assert result.details[2].user_answer == "other 3"
    assert result.details[2].correct_answer == "right 3"


async def test_mirror_push_is_truncated_to_500(gateway, history: HistoryRecorder) -> None:
    exam = make_exam(questions=1)
    for _ in range(501):
        await history.record(exam, {1: 0}, "Sara", ExamMode.TIMED, "en")
    mirror = FakeMirror(CloudConfig.model_validate(GOOD_CONFIG))
    gateway.attach_mirror(mirror)

    latest = await history.record(exam, {}, "Last", ExamMode.TIMED, "en")
    await gateway.drain()

    assert len(history.history) == 502
    collection, pushed = mirror.writes[-1]
    assert collection == "history"
    assert len(pushed) == 500
    assert pushed[0]["id"] == latest.id


async def test_failed_push_is_not_surfaced(gateway, history: HistoryRecorder) -> None:
    mirror = FakeMirror(CloudConfig.model_validate(GOOD_CONFIG))
    mirror.fail_writes = True
    gateway.attach_mirror(mirror)

    result = await history.record(make_exam(questions=1), {1: 0}, "Sara", ExamMode.TIMED, "en")
    await gateway.drain()

    assert history.history[0].id == result.id


async def test_delete_and_clear(history: HistoryRecorder) -> None:
    exam = make_exam(questions=1)
    kept = await history.record(exam, {1: 0}, "A1", ExamMode.TIMED, "en")
    gone = await history.record(exam, {1: 0}, "B2", ExamMode.TIMED, "en")

    assert await history.delete(gone.id)
    assert not await history.delete("missing")
    assert [r.id for r in history.history] == [kept.id]

    await history.clear()
    assert history.history == []


def test_malformed_stored_entries_are_dropped(local_store, gateway) -> None:
    local_store.set(HISTORY_KEY, '[{"id": "x"}, 5]')
    assert HistoryRecorder(gateway).history == []


async def test_failed_write_leaves_history_unchanged(history: HistoryRecorder, local_store, monkeypatch) -> None:
    kept = await history.record(make_exam(questions=1), {1: 0}, "Sara", ExamMode.TIMED, "en")

    def disk_full(key: str, value: str) -> None:
        raise RuntimeError("disk full")

    monkeypatch.setattr(local_store, "set", disk_full)
    with pytest.raises(RuntimeError):
        await history.record(make_exam(questions=1), {1: 0}, "Omar", ExamMode.TIMED, "en")
    with pytest.raises(RuntimeError):
        await history.clear()

    assert [r.id for r in history.history] == [kept.id]
