import json
from collections.abc import Generator, Mapping
from typing import final

from bard import Bard
from man7 import ManPage
from ui import Logger, NullLogger

url_mark = '%URL%'
manpage_mark = '%MANPAGE%'

def norm_question(question: str, page: ManPage):
    question = question.replace(url_mark, page.full_url, 1)
    question = question.replace(manpage_mark, page.name, 1)
    return question

@final
class ManChat:
    def __init__(self,
                 page: ManPage,
                 questions: Mapping[str, str],
                 bard: Bard,
                 logger: Logger|None = None,
                 ):
        self.page = page
        self.questions = questions
        self.bard = bard
        self.logger: Logger = NullLogger() if logger is None else logger

    def ask_questions(self) -> Generator[tuple[str, str]]:
        for title, question in self.questions.items():
            prompt = norm_question(question, self.page)
            self.logger.log(f'ask: {json.dumps({
                "manpage": self.page.name,
                "title": title,
                "prompt": prompt,
            })}')
            self.bard.ask(prompt)
            yield title, self.bard.answer

import pytest
import requests

from bard import canned, landing, make_bard, replying
from batchexec import ProtocolError
from ui import PromptUI

grep_page = ManPage(1, 'grep', './man1/grep.1.html', 'print lines that match patterns')

def test_norm_question():
    assert norm_question('Explain %MANPAGE%, see %URL%', grep_page) == \
        'Explain grep, see https://man7.org/linux/man-pages/man1/grep.1.html'

    # only the first of each placeholder is substituted
    assert norm_question('%MANPAGE% %MANPAGE% %URL% %URL%', grep_page) == \
        'grep %MANPAGE% https://man7.org/linux/man-pages/man1/grep.1.html %URL%'

    assert norm_question('no placeholders', grep_page) == 'no placeholders'

def test_ask_questions():
    bard, http = make_bard(
        landing(),
        replying('c', 'r1', ('rc1', 'grep prints matching lines')),
        landing(),
        replying('c', 'r2', ('rc2', 'grep -i foo')))
    with PromptUI.TestHarness() as harness:
        chat = ManChat(grep_page, {
            'Overview': 'What is %MANPAGE%?',
            'Examples': 'Show examples for %MANPAGE% from %URL%',
        }, bard, logger=harness.ui)

        assert list(chat.ask_questions()) == [
            ('Overview', 'grep prints matching lines'),
            ('Examples', 'grep -i foo'),
        ]
        asks = [line for line in harness.logs if ' ask: ' in line]
        assert len(asks) == 2

    assert len(http.sent) == 4

def test_ask_questions_aborts_on_error():
    responses: list[requests.Response|Exception] = [
        landing(),
        replying('c', 'r1', ('rc1', 'first')),
        landing(),
        canned('', status=500),
    ]
    bard, http = make_bard(*responses)
    chat = ManChat(grep_page, {'one': '1', 'two': '2', 'three': '3'}, bard)

    got: list[tuple[str, str]] = []
    with pytest.raises(ProtocolError):
        for title, answer in chat.ask_questions():
            got.append((title, answer))

    assert got == [('one', 'first')]
    assert len(http.sent) == 4
