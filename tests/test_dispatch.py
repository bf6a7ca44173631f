from __future__ import annotations

import asyncio
import shlex
import sys

import allure
import pytest

from labelflow.errors import DispatchError
from labelflow.orchestrator.contracts import DispatchRequest, SessionAction, Task, TaskComment
from labelflow.orchestrator.dispatch import (
    CommandDispatcher,
    build_run_args,
    build_task_message,
)

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Command Dispatcher"),
]


def _python_template(script: str, *placeholders: str) -> str:
    args = " ".join("{" + name + "}" for name in placeholders)
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(script)} {args}".strip()


def _request(
    *,
    session_ref: str | None = None,
    comments: list[TaskComment] | None = None,
) -> DispatchRequest:
    return DispatchRequest(
        project_id="g1",
        project_name="shop",
        repo="/srv/shop",
        role="developer",
        level="medior",
        task=Task(
            id="7",
            title="Add login",
            description="Users need to sign in.",
            url="https://tracker.example/issues/7",
        ),
        from_label="To Do",
        to_label="Doing",
        session_action=SessionAction.SEND if session_ref else SessionAction.SPAWN,
        session_ref=session_ref,
        comments=comments or [],
    )


def test_session_ref_reported_on_stdout_is_used() -> None:
    script = (
        "import json, sys; "
        "print(json.dumps(dict(session_ref='ref-' + sys.argv[1] + '-' + sys.argv[2])))"
    )
    dispatcher = CommandDispatcher(_python_template(script, "task_id", "level"))

    result = asyncio.run(dispatcher.dispatch(_request()))

    assert result.session_ref == "ref-7-medior"
    assert result.action == SessionAction.SPAWN
    assert result.announcement == "Spawning DEVELOPER (medior) for #7: Add login"


def test_plain_stdout_falls_back_to_known_or_default_session() -> None:
    dispatcher = CommandDispatcher(_python_template("print('accepted')"))

    spawned = asyncio.run(dispatcher.dispatch(_request()))
    sent = asyncio.run(dispatcher.dispatch(_request(session_ref="sess-old")))

    assert spawned.session_ref == "labelflow:g1:developer:medior"
    assert sent.session_ref == "sess-old"
    assert sent.announcement.startswith("Sending DEVELOPER")


def test_non_zero_exit_raises_dispatch_error_with_last_stderr_line() -> None:
    script = "import sys; sys.stderr.write('warming up\\nworker busy\\n'); sys.exit(3)"
    dispatcher = CommandDispatcher(_python_template(script))

    with pytest.raises(DispatchError, match="exited with 3: worker busy"):
        asyncio.run(dispatcher.dispatch(_request()))


def test_missing_binary_raises_dispatch_error() -> None:
    dispatcher = CommandDispatcher("labelflow-no-such-binary-xyz {task_id}")

    with pytest.raises(DispatchError, match="not found"):
        asyncio.run(dispatcher.dispatch(_request()))


def test_slow_command_times_out() -> None:
    dispatcher = CommandDispatcher(
        _python_template("import time; time.sleep(5)"),
        timeout_seconds=0.5,
    )

    with pytest.raises(DispatchError, match="timed out"):
        asyncio.run(dispatcher.dispatch(_request()))


def test_build_run_args_quotes_values_into_single_arguments() -> None:
    argv = build_run_args(
        command_template="agent --task {task_id} --message {message}",
        values={"task_id": "7", "message": "fix it; rm -rf /"},
    )

    assert argv == ["agent", "--task", "7", "--message", "fix it; rm -rf /"]


@pytest.mark.parametrize(
    ("template", "message"),
    [
        ("   ", "template is empty"),
        ("agent {model}", "Unsupported command template placeholder"),
    ],
)
def test_build_run_args_rejects_bad_templates(template: str, message: str) -> None:
    with pytest.raises(DispatchError, match=message):
        build_run_args(command_template=template, values={"task_id": "7"})


def test_task_message_includes_description_and_comments() -> None:
    message = build_task_message(
        _request(comments=[TaskComment(author="alice", body="Use OAuth", created_at="")]),
    )

    assert "Issue #7: Add login" in message
    assert "Users need to sign in." in message
    assert "- alice: Use OAuth" in message
    assert message.endswith("report the result for role developer on #7.")
