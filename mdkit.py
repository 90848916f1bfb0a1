import os
from collections.abc import Generator
from pathlib import Path

def ensure_parent_dir(file: str|Path):
    pardir = os.path.dirname(file)
    if pardir and not os.path.exists(pardir):
        os.makedirs(pardir)

def section_lines(title: str, content: str, level: int = 2) -> Generator[str]:
    yield f'{"#" * level} {title}'
    body = content.rstrip('\n')
    if body:
        yield from body.split('\n')
    yield ''

def append_section(out_dir: str|Path, name: str, title: str, content: str):
    path = Path(out_dir) / f'{name}.md'
    ensure_parent_dir(path)
    fresh = not path.exists()
    with open(path, 'a') as f:
        if fresh:
            for line in section_lines(name, '', level=1):
                print(line, file=f)
        for line in section_lines(title, content):
            print(line, file=f)
    return path

def test_append_section(tmp_path: Path):
    out = tmp_path / 'out'
    path = append_section(out, 'grep', 'Overview', 'grep searches files.\n')
    assert path == out / 'grep.md'
    _ = append_section(out, 'grep', 'Examples', '```\ngrep -r foo .\n```')
    _ = append_section(out, 'open', 'Overview', '')

    assert (out / 'grep.md').read_text() == '\n'.join((
        '# grep',
        '',
        '## Overview',
        'grep searches files.',
        '',
        '## Examples',
        '```',
        'grep -r foo .',
        '```',
        '',
    )) + '\n'

    assert (out / 'open.md').read_text() == '# open\n\n## Overview\n\n'
