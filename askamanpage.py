#!/usr/bin/env python

import argparse
import os
import sys
from collections.abc import Callable, Sequence
from contextlib import nullcontext
from pathlib import Path
from typing import TextIO, cast

from dotenv import load_dotenv

from bard import Bard
from batchexec import BardError
from chat import ManChat
from man7 import ManPages, ScrapeError, scrape_man_pages
from mdkit import append_section
from recipe import Recipe, RecipeError, read_recipe
from ui import Logger, PromptUI

_ = load_dotenv()

default_out_dir = 'out'

psid_env = 'BARD_PSID'
psidts_env = 'BARD_PSIDTS'

class ConfigError(RuntimeError):
    pass

def bard_cookies(environ: dict[str, str]|None = None):
    if environ is None: environ = dict(os.environ)
    psid = environ.get(psid_env, '')
    psidts = environ.get(psidts_env, '')
    missing = [name for name, value in ((psid_env, psid), (psidts_env, psidts)) if not value]
    if missing:
        raise ConfigError(f'{" and ".join(missing)} not set')
    return psid, psidts

BardFactory = Callable[[Logger], Bard]

def ask_a_man_page(
    ui: PromptUI,
    recipe: Recipe,
    pages: ManPages,
    make_bard: BardFactory,
    out_dir: str|Path = default_out_dir,
    all_pages: bool = False,
):
    questions = recipe.titles_and_questions()
    failed = 0

    for name in recipe.manpages:
        page = pages.get(name)
        if page is None:
            ui.print(f'! {name}: no such man page')
            ui.log(f'unknown manpage: {name}')
            failed += 1
        else:
            ui.print(f'* {page}')
            try:
                with make_bard(ui) as bard:
                    chat = ManChat(page, questions, bard, logger=ui)
                    for title, answer in chat.ask_questions():
                        path = append_section(out_dir, name, title, answer)
                        ui.print(f'  - {title} -> {path}')
            except BardError as err:
                ui.print(f'! {name}: {type(err).__name__}: {err}')
                failed += 1

        if not all_pages:
            break

    return failed

def make_parser():
    parser = argparse.ArgumentParser(
        prog='askamanpage',
        description='Create content from man7.org manual pages')
    _ = parser.add_argument('recipe', nargs='?', help='path to the recipe YAML file')
    _ = parser.add_argument('-f', '--file', dest='file', help='path to the recipe YAML file')
    _ = parser.add_argument('--out', default=default_out_dir, help='output directory for markdown files')
    _ = parser.add_argument('--log', type=argparse.FileType('a'), help='append a session log to this file')
    _ = parser.add_argument('--all', action='store_true', help='ask about every man page in the recipe, not just the first')
    return parser

def main(argv: Sequence[str]|None = None):
    parser = make_parser()
    args = parser.parse_args(argv)

    recipe_file = cast(str|None, args.file) or cast(str|None, args.recipe)
    if not recipe_file:
        parser.error('must provide a recipe file')

    try:
        psid, psidts = bard_cookies()
    except ConfigError as err:
        print(f'{err}', file=sys.stderr)
        return 1

    log_file = cast(TextIO|None, args.log)
    with log_file if log_file else nullcontext():
        ui = PromptUI(log_file=log_file)

        try:
            recipe = read_recipe(recipe_file)
            ui.log(f'recipe: {recipe_file}')
            pages = scrape_man_pages()
            ui.log(f'manpages: {len(pages)}')
        except (RecipeError, ScrapeError) as err:
            ui.print(f'! {err}')
            return 1

        failed = ask_a_man_page(ui, recipe, pages,
            make_bard=lambda logger: Bard(psid, psidts, logger=logger),
            out_dir=cast(str, args.out),
            all_pages=cast(bool, args.all))

    return 1 if failed else 0

import pytest

from bard import FakeHTTP, canned, landing, make_bard as make_fake_bard, replying
from man7 import ManPage

def test_bard_cookies():
    assert bard_cookies({psid_env: 'a', psidts_env: 'b'}) == ('a', 'b')
    with pytest.raises(ConfigError, match='BARD_PSID and BARD_PSIDTS not set'):
        _ = bard_cookies({})
    with pytest.raises(ConfigError, match='BARD_PSIDTS not set'):
        _ = bard_cookies({psid_env: 'a'})

sample_recipe = Recipe.parse('''
manpages: [grep, nosuch, open]
questions:
  - title: Overview
    question: Explain %MANPAGE%, see %URL%
  - title: Flags
    question: List flags of %MANPAGE%
''')

sample_pages = ManPages([
    ManPage(1, 'grep', './man1/grep.1.html', 'print lines that match patterns'),
    ManPage(2, 'open', './man2/open.2.html', 'open and possibly create a file'),
])

def test_ask_a_man_page(tmp_path: Path):
    bards: list[Bard] = []
    clients: list[FakeHTTP] = []
    def fake(logger: Logger):
        bard, http = make_fake_bard(
            landing(),
            replying('c', 'r1', ('rc1', 'grep searches.')),
            landing(),
            replying('c', 'r2', ('rc2', '-i ignores case')),
            logger=logger)
        bards.append(bard)
        clients.append(http)
        return bard

    with PromptUI.TestHarness() as harness:
        failed = ask_a_man_page(harness.ui, sample_recipe, sample_pages, fake, out_dir=tmp_path)
        assert failed == 0
        assert len(bards) == 1
        assert clients[0].closed
        assert harness.all_output() == '\n'.join((
            '* ./man1/grep.1.html: grep(1) - print lines that match patterns',
            f'  - Overview -> {tmp_path / "grep.md"}',
            f'  - Flags -> {tmp_path / "grep.md"}',
        )) + '\n'

    assert (tmp_path / 'grep.md').read_text() == '\n'.join((
        '# grep',
        '',
        '## Overview',
        'grep searches.',
        '',
        '## Flags',
        '-i ignores case',
        '',
    )) + '\n'

def test_ask_a_man_page_all(tmp_path: Path):
    clients: list[FakeHTTP] = []
    def fake(logger: Logger):
        bard, http = make_fake_bard(
            landing(),
            replying('c', 'r1', ('rc1', 'first')),
            landing(),
            canned('', status=503),
            logger=logger)
        clients.append(http)
        return bard

    with PromptUI.TestHarness() as harness:
        failed = ask_a_man_page(harness.ui, sample_recipe, sample_pages, fake,
                                out_dir=tmp_path, all_pages=True)
        output = harness.all_output()

    # grep and open each fail their second question, nosuch is unknown
    assert failed == 3
    assert len(clients) == 2
    assert all(http.closed for http in clients)
    assert '! nosuch: no such man page' in output
    assert '! grep: ProtocolError: query failed with status code 503' in output
    assert (tmp_path / 'grep.md').read_text() == '# grep\n\n## Overview\nfirst\n\n'
    assert (tmp_path / 'open.md').read_text() == '# open\n\n## Overview\nfirst\n\n'

def test_main_requires_cookies(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]):
    monkeypatch.delenv(psid_env, raising=False)
    monkeypatch.delenv(psidts_env, raising=False)
    assert main(['recipe.yaml']) == 1
    assert 'BARD_PSID and BARD_PSIDTS not set' in capsys.readouterr().err

if __name__ == '__main__':
    sys.exit(main())
