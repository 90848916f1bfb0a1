import re
from collections.abc import Generator, Iterable
from dataclasses import dataclass
from typing import Any, cast, final, override

import requests
from bs4 import BeautifulSoup, NavigableString, Tag

base_url = 'https://man7.org/linux/man-pages/'
all_man_pages = 'dir_all_alphabetic.html'

class ScrapeError(RuntimeError):
    pass

@final
@dataclass(frozen=True)
class ManPage:
    section: int
    name: str
    url: str
    description: str

    @property
    def full_url(self):
        return base_url + self.url.lstrip('./')

    @override
    def __str__(self):
        return f'{self.url}: {self.name}({self.section}) - {self.description}'

@final
class ManPages:
    def __init__(self, pages: Iterable[ManPage] = ()):
        self.pages: dict[str, ManPage] = {}
        for page in pages:
            self.add(page)

    def add(self, page: ManPage):
        self.pages[page.name] = page

    def get(self, name: str):
        return self.pages.get(name)

    def __len__(self):
        return len(self.pages)

    def __contains__(self, name: str):
        return name in self.pages

link_pattern = re.compile(r'(?x) ( .+ ) \( ( \d ) \) $')
desc_pattern = re.compile(r'(?x) \s* - \s* ( [^\n]*? ) \s* (?: \n | $ )')

def parse_man_pages(content: str|bytes) -> Generator[ManPage]:
    # e.g.: &nbsp; &nbsp; <a href="./man8/yum-copr.8.html">yum-copr(8)</a> - YUM copr Plugin
    soup = BeautifulSoup(content, 'html.parser')
    for a in soup.find_all('a', href=True):
        a = cast(Tag, a)
        match = link_pattern.match(a.get_text())
        if not match: continue

        after = a.next_sibling
        if not isinstance(after, NavigableString): continue
        desc = desc_pattern.match(str(after))
        if not desc: continue

        name, section = match.groups()
        yield ManPage(
            section = int(section),
            name = name,
            url = cast(str, a['href']),
            description = desc.group(1),
        )

def scrape_man_pages(http_client: requests.Session|None = None, url: str = base_url + all_man_pages):
    if http_client is None:
        http_client = requests.Session()
    try:
        res = http_client.get(url)
    except requests.RequestException as err:
        raise ScrapeError(f'failed to get {url}: {err}') from err
    if res.status_code != 200:
        raise ScrapeError(f'failed to get {url}: status code {res.status_code}')
    return ManPages(parse_man_pages(res.content))

import pytest

sample_dir_page = '''<html><body>
<h2>A</h2>
<p>
&nbsp; &nbsp; <a href="./man1/grep.1.html">grep(1)</a> - print lines that match patterns<br>
&nbsp; &nbsp; <a href="./man1/grep.1p.html">grep(1p)</a> - search a file for a pattern<br>
&nbsp; &nbsp; <a href="./man2/open.2.html">open(2)</a> - open and possibly create a file<br>
&nbsp; &nbsp; <a href="./man8/yum-copr.8.html">yum-copr(8)</a> - YUM copr Plugin
&nbsp; &nbsp; <a href="../index.html">Linux man pages: home</a>
&nbsp; &nbsp; <a href="./man7/nodash.7.html">nodash(7)</a>
</p>
</body></html>
'''

def test_parse_man_pages():
    pages = list(parse_man_pages(sample_dir_page))
    assert pages == [
        ManPage(1, 'grep', './man1/grep.1.html', 'print lines that match patterns'),
        ManPage(2, 'open', './man2/open.2.html', 'open and possibly create a file'),
        ManPage(8, 'yum-copr', './man8/yum-copr.8.html', 'YUM copr Plugin'),
    ]

def test_man_page():
    page = ManPage(1, 'grep', './man1/grep.1.html', 'print lines that match patterns')
    assert page.full_url == 'https://man7.org/linux/man-pages/man1/grep.1.html'
    assert str(page) == './man1/grep.1.html: grep(1) - print lines that match patterns'

def test_man_pages_get():
    pages = ManPages(parse_man_pages(sample_dir_page))
    assert len(pages) == 3
    assert 'open' in pages
    page = pages.get('open')
    assert page is not None and page.section == 2
    assert pages.get('nodash') is None

@final
class FakeDirectory(requests.Session):
    def __init__(self, status: int = 200, content: str = sample_dir_page):
        super().__init__()
        self.status = status
        self.content = content
        self.urls: list[str|None] = []

    @override
    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        self.urls.append(request.url)
        res = requests.Response()
        res.status_code = self.status
        res._content = self.content.encode() # pyright: ignore [reportPrivateUsage]
        return res

def test_scrape_man_pages():
    http = FakeDirectory()
    pages = scrape_man_pages(http)
    assert http.urls == ['https://man7.org/linux/man-pages/dir_all_alphabetic.html']
    assert len(pages) == 3

    with pytest.raises(ScrapeError):
        _ = scrape_man_pages(FakeDirectory(status=404))
