import contextlib

from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from crypto_journal.models import AccountType
from crypto_journal.term_ui import (
    ACTION_CREATE,
    ACTION_QUIT,
    ACTION_SKIP,
    prompt_account_name,
    prompt_account_type,
    prompt_category_code,
    prompt_suggestion_action,
    validate_account_name,
)


@contextlib.contextmanager
def pipe_session():
    with create_pipe_input() as pipe:
        sess = PromptSession(input=pipe, output=DummyOutput())
        yield pipe, sess


def test_enter_on_action_means_create():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert prompt_suggestion_action(session=sess) == ACTION_CREATE


def test_action_prefix_is_expanded():
    with pipe_session() as (pipe, sess):
        pipe.send_text("sk\r")
        assert prompt_suggestion_action(session=sess) == ACTION_SKIP


def test_ctrl_c_on_action_means_quit():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x03")
        assert prompt_suggestion_action(session=sess) == ACTION_QUIT


def test_account_name_default_is_accepted_with_enter():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert prompt_account_name(initial="Consulting Revenue", session=sess) == (
            "Consulting Revenue"
        )


def test_account_name_can_be_replaced_and_is_normalized():
    with pipe_session() as (pipe, sess):
        # Ctrl-A (home), Ctrl-K (kill to end), type the new name, Enter
        pipe.send_text("\x01\x0bLegal  Fees\r")
        assert prompt_account_name(initial="Lawyers", existing={"Office Expenses"}, session=sess) == (
            "Legal Fees"
        )


def test_account_type_default_and_override():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert prompt_account_type(default=AccountType.LIABILITY, session=sess) is AccountType.LIABILITY
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0brevenue\r")
        assert prompt_account_type(session=sess) is AccountType.REVENUE


def test_category_code_pick():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0b6000\r")
        assert prompt_category_code(["1000", "5000", "6000"], default="5000", session=sess) == "6000"


def test_validate_account_name():
    assert validate_account_name("Legal & Professional Fees").ok
    assert not validate_account_name("   ").ok
    assert not validate_account_name("x" * 101).ok
    check = validate_account_name("Fees; DROP TABLE")
    assert not check.ok
    assert check.reason == "Name contains unsupported characters"
