import json
import random
from collections.abc import Callable, Sequence
from types import TracebackType
from typing import Any, final, override
from urllib.parse import parse_qs, urlsplit

import requests

from batchexec import (
    Answer,
    AuthError,
    BardError,
    DecodeError,
    ProtocolError,
    Reply,
    TransportError,
    batch_params,
    decode_response,
    encode_request,
    max_answers,
    parse_token,
    token_pattern,
)
from ui import Logger, NullLogger, PromptUI

host = 'bard.google.com'
origin = f'https://{host}'
query_url = f'{origin}/_/BardChatUi/data/assistant.lamda.BardFrontendService/StreamGenerate'

psid_cookie = '__Secure-1PSID'
psidts_cookie = '__Secure-1PSIDTS'

token_timeout = 5 # seconds
query_timeout = 15 # seconds

headers = {
    'Host': host,
    'X-Same-Domain': '1',
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36 Edg/114.0.1823.82',
    'Content-Type': 'application/x-www-form-urlencoded;charset=UTF-8',
    'Origin': origin,
    'Referer': f'{origin}/',
}

redacted_token = 'SNlM0e":"<redacted>"'

def random_reqid():
    return random.randint(100000, 999999)

@final
class Answers:
    def __init__(self):
        self.slots: list[Answer] = [Answer()] * max_answers
        self.cursor: int = 0
        self.count: int = 0
        self.found: int = 0

    @property
    def current(self):
        return self.slots[self.cursor]

    def next(self):
        self.cursor = (self.cursor + 1) % max_answers

    def prev(self):
        self.cursor = (self.cursor + max_answers - 1) % max_answers

    def rewind(self):
        self.cursor = 0

    def clear(self):
        self.slots = [Answer()] * max_answers
        self.cursor = 0
        self.count = 0
        self.found = 0

    def replace(self, reply: Reply):
        answers = reply.answers[:max_answers]
        self.slots = [*answers, *([Answer()] * (max_answers - len(answers)))]
        self.cursor = 0
        self.count = len(answers)
        self.found = reply.found

class Bard:
    '''
    A conversation with bard.google.com, driven through its batch-execute
    endpoint. Each ask() fetches a fresh XSRF token, then posts the prompt
    along with the continuity ids of the currently selected answer.

    Up to 3 candidate answers are kept from the last successful ask();
    next() and prev() rotate through them.

    Not safe for concurrent use; use one Bard per conversation.
    '''

    def __init__(self,
                 psid: str,
                 psidts: str,
                 logger: Logger|None = None,
                 http_client: requests.Session|None = None,
                 reqid: Callable[[], int] = random_reqid,
                 ):
        self.psid = psid
        self.psidts = psidts
        self.logger: Logger = NullLogger() if logger is None else logger
        self.http_client = requests.Session() if http_client is None else http_client
        self.reqid = reqid
        self.answers = Answers()

    def close(self):
        self.http_client.close()

    def __enter__(self):
        return self

    def __exit__(
        self,
        type_: type[BaseException] | None,
        value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool:
        self.close()
        return False

    @property
    def cookies(self):
        return {
            psid_cookie: self.psid,
            psidts_cookie: self.psidts,
        }

    def request(self,
        method: str,
        url: str,
        timeout: int,
        params: dict[str, str]|None = None,
        data: dict[str, str]|None = None,
    ):
        req = self.http_client.prepare_request(requests.Request(
            method=method,
            url=url,
            headers=dict(headers),
            cookies=self.cookies,
            params=params,
            data=data,
        ))

        self.logger.log(f'request: {json.dumps({
            "method": req.method,
            "url": req.url,
            "headers": {
                k: "<redacted>" if k.lower() == "cookie" else v
                for k, v in req.headers.items()
            },
            "data": {
                k: "<redacted>" if k == "at" else v
                for k, v in data.items()
            } if data else data,
            "timeout": timeout,
        })}')

        try:
            res = self.http_client.send(req, timeout=timeout)
        except requests.RequestException as err:
            self.logger.log(f'request error: {json.dumps(str(err))}')
            raise TransportError(f'{method} {url} failed: {err}') from err

        self.logger.log(f'response: {json.dumps({
            "url": res.url,
            "status": res.status_code,
            "reason": res.reason,
            "content": token_pattern.sub(redacted_token, res.text),
        })}')

        return res

    def fetch_token(self):
        # e.g. AJWyuYX8NLX7SKFihs03g0AoLU-o:1689960334051
        res = self.request('GET', f'{origin}/', timeout=token_timeout)
        if res.status_code != 200:
            raise AuthError(f'landing page status code: {res.status_code}')
        return parse_token(res.text)

    def send(self, form: dict[str, str], params: dict[str, str]):
        res = self.request('POST', query_url,
                           timeout=query_timeout,
                           params=params,
                           data=form)
        if res.status_code != 200:
            raise ProtocolError(res.status_code, 'query')
        return res.text

    def ask(self, prompt: str):
        try:
            token = self.fetch_token()
            form = encode_request(prompt, self.answers.current, token)
            params = batch_params(self.reqid())

            # the cursor is reset even when the ask fails from here on
            self.answers.rewind()

            reply = decode_response(self.send(form, params))

        except BardError as err:
            self.logger.log(f'ask error: {type(err).__name__} {json.dumps(str(err))}')
            raise

        self.answers.replace(reply)
        self.logger.log(f'answers: {json.dumps({
            "conversation_id": reply.conversation_id,
            "response_id": reply.response_id,
            "choices": [a.choice_id for a in reply.answers],
            "found": reply.found,
        })}')

    @property
    def cursor(self):
        return self.answers.cursor

    @property
    def answer(self):
        return self.answers.current.content

    def next(self):
        self.answers.next()

    def prev(self):
        self.answers.prev()

    def next_answer(self):
        self.next()
        return self.answer

    def prev_answer(self):
        self.prev()
        return self.answer

    def reset(self):
        self.answers.clear()
        self.logger.log('reset')

    @property
    def num_answers(self):
        return self.answers.count

    @property
    def num_found(self):
        return self.answers.found

import pytest

from batchexec import candidate_payload, frame_body

def canned(body: str, status: int = 200):
    res = requests.Response()
    res.status_code = status
    res._content = body.encode() # pyright: ignore [reportPrivateUsage]
    res.encoding = 'utf-8'
    return res

def landing(token: str = 'tok-1'):
    return canned(f'<script>WIZ_global_data = {{"SNlM0e":"{token}","GWsdKe":"en"}}</script>')

def replying(conversation_id: str, response_id: str, *cands: tuple[str, str]):
    return canned(frame_body(candidate_payload(conversation_id, response_id, *cands)))

@final
class FakeHTTP(requests.Session):
    def __init__(self, *responses: requests.Response|Exception):
        super().__init__()
        self.responses: list[requests.Response|Exception] = list(responses)
        self.sent: list[tuple[requests.PreparedRequest, object]] = []
        self.closed = False

    @override
    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        self.sent.append((request, kwargs.get('timeout')))
        res = self.responses.pop(0)
        if isinstance(res, Exception):
            raise res
        return res

    @override
    def close(self):
        self.closed = True
        super().close()

def make_bard(*responses: requests.Response|Exception, logger: Logger|None = None):
    http = FakeHTTP(*responses)
    return Bard('psid-value', 'psidts-value',
                logger=logger,
                http_client=http,
                reqid=lambda: 123456), http

def sent_form(req: requests.PreparedRequest):
    body = req.body
    if isinstance(body, bytes): body = body.decode()
    assert isinstance(body, str)
    return {k: v[0] for k, v in parse_qs(body).items()}

def sent_continuity(req: requests.PreparedRequest) -> Sequence[str]:
    outer = json.loads(sent_form(req)['f.req'])
    inner = json.loads(outer[1])
    return inner[2]

def test_ask_two_candidates():
    bard, http = make_bard(
        landing('tok-1'),
        replying('conv-1', 'resp-1', ('c1', 'Answer A'), ('c2', 'Answer B')))

    bard.ask('What is grep?')

    assert bard.num_answers == 2
    assert bard.num_found == 2
    assert bard.cursor == 0
    assert bard.answer == 'Answer A'
    bard.next()
    assert bard.answer == 'Answer B'
    assert bard.next_answer() == ''
    assert bard.next_answer() == 'Answer A'
    assert bard.prev_answer() == ''

    (get, get_timeout), (post, post_timeout) = http.sent

    assert get.method == 'GET'
    assert get.url == 'https://bard.google.com/'
    assert get_timeout == 5

    assert post.method == 'POST'
    assert post_timeout == 15
    url = urlsplit(post.url or '')
    assert f'{url.scheme}://{url.netloc}{url.path}' == query_url
    assert {k: v[0] for k, v in parse_qs(url.query).items()} == {
        'bl': 'boq_assistant-bard-web-server_20230718.13_p2',
        '_reqid': '123456',
        'rt': 'c',
    }

    for req in (get, post):
        assert req.headers['Host'] == 'bard.google.com'
        assert req.headers['User-Agent'] == headers['User-Agent']
        cookie = req.headers['Cookie']
        assert '__Secure-1PSID=psid-value' in cookie
        assert '__Secure-1PSIDTS=psidts-value' in cookie
        assert req.headers['X-Same-Domain'] == '1'
        assert req.headers['Origin'] == 'https://bard.google.com'
        assert req.headers['Referer'] == 'https://bard.google.com/'
        assert req.headers['Content-Type'] == 'application/x-www-form-urlencoded;charset=UTF-8'

    form = sent_form(post)
    assert form == encode_request('What is grep?', Answer(), 'tok-1')

def test_ask_continues_from_selected_answer():
    bard, http = make_bard(
        landing(),
        replying('conv-1', 'resp-1', ('c1', 'A'), ('c2', 'B'), ('c3', 'C')),
        landing(),
        replying('conv-1', 'resp-2', ('c4', 'D')))

    bard.ask('first')
    bard.prev()
    assert bard.answer == 'C'
    bard.ask('second')

    assert sent_continuity(http.sent[1][0]) == ['', '', '']
    assert sent_continuity(http.sent[3][0]) == ['conv-1', 'resp-1', 'c3']

    assert bard.cursor == 0
    assert bard.num_answers == 1
    assert bard.answer == 'D'
    assert bard.answers.slots[0] == Answer('D', 'conv-1', 'resp-2', 'c4')

    # fewer candidates than before must not leave stale answers behind
    assert bard.next_answer() == ''
    assert bard.next_answer() == ''

def test_ask_caps_candidates():
    bard, _ = make_bard(
        landing(),
        replying('c', 'r', *((f'rc_{n}', f'answer {n}') for n in range(5))))
    bard.ask('many')
    assert bard.num_answers == 3
    assert bard.num_found == 5
    assert [a.content for a in bard.answers.slots] == ['answer 0', 'answer 1', 'answer 2']

@pytest.mark.parametrize('start', [0, 1, 2])
def test_rotation(start: int):
    bard = Bard('', '')
    for _ in range(start): bard.next()
    assert bard.cursor == start

    for _ in range(3): bard.next()
    assert bard.cursor == start

    bard.next()
    bard.prev()
    assert bard.cursor == start

    bard.prev()
    assert bard.cursor == (start + 2) % 3

def test_reset():
    bard, _ = make_bard(
        landing(),
        replying('conv-1', 'resp-1', ('c1', 'A'), ('c2', 'B')))
    bard.ask('hi')
    bard.next()
    bard.reset()
    assert bard.num_answers == 0
    assert bard.num_found == 0
    assert bard.cursor == 0
    assert bard.answers.slots == [Answer(), Answer(), Answer()]
    for slot in bard.answers.slots:
        assert slot.continuity == ['', '', '']
        assert slot.content == ''

@pytest.mark.parametrize('second', [
    pytest.param(replying('conv-2', 'resp-2'), id='no candidates'),
    pytest.param(canned(frame_body([None, ['conv-2', 'resp-2'], None, None, []])), id='empty candidates'),
    pytest.param(canned('garbage'), id='garbage'),
])
def test_ask_decode_error_keeps_state(second: requests.Response):
    bard, _ = make_bard(
        landing(),
        replying('conv-1', 'resp-1', ('c1', 'A'), ('c2', 'B')),
        landing(),
        second)
    bard.ask('first')
    bard.next()
    prior = list(bard.answers.slots)

    with pytest.raises(DecodeError):
        bard.ask('second')

    assert bard.answers.slots == prior
    assert bard.num_answers == 2
    assert bard.cursor == 0
    assert bard.answer == 'A'

@pytest.mark.parametrize('resp', [
    pytest.param(canned('', status=403), id='forbidden'),
    pytest.param(canned('<html>Sign in</html>'), id='no token'),
])
def test_ask_auth_error(resp: requests.Response):
    bard, http = make_bard(resp)
    bard.next()
    with pytest.raises(AuthError):
        bard.ask('hi')
    assert len(http.sent) == 1
    assert bard.cursor == 1
    assert bard.num_answers == 0

def test_ask_transport_error():
    bard, _ = make_bard(landing(), requests.ConnectionError('connection refused'))
    with pytest.raises(TransportError) as exc:
        bard.ask('hi')
    assert isinstance(exc.value.__cause__, requests.ConnectionError)

    bard, _ = make_bard(requests.Timeout('timed out'))
    with pytest.raises(TransportError):
        bard.ask('hi')

def test_ask_protocol_error():
    bard, _ = make_bard(landing(), canned('oops', status=500))
    with pytest.raises(ProtocolError) as exc:
        bard.ask('hi')
    assert exc.value.status == 500
    assert bard.num_answers == 0

def test_ask_logs():
    with PromptUI.TestHarness() as harness:
        bard, _ = make_bard(
            landing(),
            replying('conv-1', 'resp-1', ('c1', 'A')),
            landing(),
            canned('', status=429),
            logger=harness.ui)
        bard.ask('hi')
        with pytest.raises(ProtocolError):
            bard.ask('again')

        events = [line.split(' ')[1] for line in harness.logs]
        assert events == [
            'request:', 'response:',
            'request:', 'response:',
            'answers:',
            'request:', 'response:',
            'request:', 'response:',
            'ask', # error
        ]
        assert not any('psid-value' in line for line in harness.logs)
        assert harness.logs[4].endswith('{"conversation_id": "conv-1", "response_id": "resp-1", "choices": ["c1"], "found": 1}')
        assert not any('tok-1' in line for line in harness.logs)
        assert '"at": "<redacted>"' in harness.logs[2]
        assert 'SNlM0e\\":\\"<redacted>\\"' in harness.logs[1]

def test_random_reqid():
    for _ in range(1000):
        n = random_reqid()
        assert isinstance(n, int)
        assert 100000 <= n <= 999999

def test_bard_close():
    http = FakeHTTP()
    with Bard('', '', http_client=http) as bard:
        assert bard.http_client is http
        assert not http.closed
    assert http.closed
