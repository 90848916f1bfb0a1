import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import cast, final
from urllib.parse import quote_plus

# Bard speaks Google's batch-execute protocol; none of this is a stable API:
# https://kovatch.medium.com/deciphering-google-batchexecute-74991e4e446c
# https://github.com/dsdanielpark/Bard-API/blob/main/bardapi/core.py

max_answers = 3

backend_version = 'boq_assistant-bard-web-server_20230718.13_p2'
response_type = 'c' # c = standard, b = protobuf, none = easier json

token_pattern = re.compile(r'SNlM0e":"(.*?)"')

payload_line = 3

class BardError(RuntimeError):
    pass

@final
class AuthError(BardError):
    pass

@final
class TransportError(BardError):
    pass

@final
class ProtocolError(BardError):
    def __init__(self, status: int, what: str = 'request'):
        super().__init__(f'{what} failed with status code {status}')
        self.status = status

@final
class EncodeError(BardError, ValueError):
    pass

@final
class DecodeError(BardError, ValueError):
    pass

@final
@dataclass(frozen=True)
class Answer:
    content: str = ''
    conversation_id: str = ''
    response_id: str = ''
    choice_id: str = ''

    @property
    def continuity(self):
        return [self.conversation_id, self.response_id, self.choice_id]

@final
@dataclass(frozen=True)
class Reply:
    answers: tuple[Answer, ...]
    conversation_id: str
    response_id: str
    found: int = 0

def parse_token(body: str):
    # e.g. "SNlM0e":"AJWyuYX8NLX7SKFihs03g0AoLU-o:1689960334051"
    match = token_pattern.search(body)
    if not match:
        raise AuthError('could not find SNlM0e token in landing page')
    return match.group(1)

def dumps(value: object):
    return json.dumps(value, separators=(',', ':'))

def encode_request(prompt: str, answer: Answer, token: str) -> dict[str, str]:
    if not isinstance(prompt, str):
        raise EncodeError(f'prompt must be text, not {type(prompt).__name__}')

    try:
        session = [
            [quote_plus(prompt)],
            None,
            answer.continuity,
        ]
        req = dumps([None, dumps(session)])
    except (TypeError, ValueError, UnicodeError) as err:
        raise EncodeError(f'unable to encode request: {err}') from err

    return {
        'f.req': req, # envelope for the single payload in this batch
        'at': token, # XSRF mitigation token
    }

def batch_params(reqid: int) -> dict[str, str]:
    return {
        'bl': backend_version,
        '_reqid': str(reqid),
        'rt': response_type,
    }

def index(value: object, *path: int) -> object:
    at: list[str] = []
    for i in path:
        at.append(str(i))
        if not isinstance(value, list):
            raise DecodeError(f'expected list at [{"][".join(at[:-1])}], got {type(value).__name__}')
        items = cast(list[object], value)
        try:
            value = items[i]
        except IndexError:
            raise DecodeError(f'missing [{"][".join(at)}]')
    return value

def index_str(value: object, *path: int, null: str|None = None) -> str:
    value = index(value, *path)
    if value is None and null is not None:
        return null
    if not isinstance(value, str):
        raise DecodeError(f'expected string at {list(path)}, got {type(value).__name__}')
    return value

def loads(s: str, what: str) -> object:
    try:
        return cast(object, json.loads(s))
    except json.JSONDecodeError as err:
        raise DecodeError(f'invalid {what} json: {err}') from err

def decode_response(body: str) -> Reply:
    lines = body.split('\n')
    try:
        line = lines[payload_line]
    except IndexError:
        raise DecodeError(f'response has only {len(lines)} lines, expected payload on line {payload_line}')

    # e.g. [["wrb.fr",null,"[null,[\"c_...\",\"r_...\"],null,null,[[\"rc_...\",[\"...\"]]]]"]]
    frame = loads(line, 'frame')
    payload = loads(index_str(frame, 0, 2), 'payload')

    conversation_id = index_str(payload, 1, 0, null='')
    response_id = index_str(payload, 1, 1, null='')

    try:
        candidates = index(payload, 4)
    except DecodeError:
        candidates = None
    if not candidates:
        raise DecodeError('response carried no candidate answers')
    if not isinstance(candidates, list):
        raise DecodeError(f'expected candidate list, got {type(candidates).__name__}')
    candidates = cast(Sequence[object], candidates)

    answers = tuple(
        Answer(
            content = index_str(cand, 1, 0),
            conversation_id = conversation_id,
            response_id = response_id,
            choice_id = index_str(cand, 0),
        )
        for cand in candidates[:max_answers])

    return Reply(answers, conversation_id, response_id, found=len(candidates))

import pytest

def frame_body(payload: object, prefix: str = ")]}'\n\n123\n") -> str:
    frame = [['wrb.fr', None, dumps(payload)]]
    return f'{prefix}{dumps(frame)}\n25\n[["di",90],["af.httprm",89,"42",1]]\n'

def candidate_payload(conversation_id: str|None, response_id: str|None, *cands: tuple[str, str]):
    return [
        None,
        [conversation_id, response_id],
        None,
        None,
        [[choice_id, [content], None] for choice_id, content in cands] if cands else None,
    ]

def test_parse_token():
    body = '<script>WIZ_global_data = {"FdrFJe":"-123","SNlM0e":"AJWyuYX8NLX7SKFihs03g0AoLU-o:1689960334051","GWsdKe":"en"}</script>'
    assert parse_token(body) == 'AJWyuYX8NLX7SKFihs03g0AoLU-o:1689960334051'

    with pytest.raises(AuthError):
        _ = parse_token('<html>Sign in</html>')

def test_encode_request():
    form = encode_request('Hello. How are you ?', Answer(), 'tok:1')
    assert form['at'] == 'tok:1'
    assert form['f.req'] == r'[null,"[[\"Hello.+How+are+you+%3F\"],null,[\"\",\"\",\"\"]]"]'

def test_encode_request_continuity():
    prior = Answer('prior', 'c_1', 'r_1', 'rc_2')
    form = encode_request('and then?', prior, 'tok')
    outer = cast(list[object], json.loads(form['f.req']))
    assert outer[0] is None
    inner = cast(list[object], json.loads(cast(str, outer[1])))
    assert inner == [['and+then%3F'], None, ['c_1', 'r_1', 'rc_2']]

def test_encode_request_rejects_non_text():
    with pytest.raises(EncodeError):
        _ = encode_request(cast(str, 42), Answer(), 'tok')

def test_encode_request_rejects_unencodable_text():
    with pytest.raises(EncodeError) as exc:
        _ = encode_request('lone \ud800 surrogate', Answer(), 'tok')
    assert isinstance(exc.value.__cause__, UnicodeError)

def test_batch_params():
    assert batch_params(123456) == {
        'bl': 'boq_assistant-bard-web-server_20230718.13_p2',
        '_reqid': '123456',
        'rt': 'c',
    }

def test_decode_response():
    body = frame_body(candidate_payload('conv-1', 'resp-1',
        ('c1', 'Answer A'),
        ('c2', 'Answer B'),
    ))
    reply = decode_response(body)
    assert reply.conversation_id == 'conv-1'
    assert reply.response_id == 'resp-1'
    assert reply.found == 2
    assert reply.answers == (
        Answer('Answer A', 'conv-1', 'resp-1', 'c1'),
        Answer('Answer B', 'conv-1', 'resp-1', 'c2'),
    )

def test_decode_response_caps_candidates():
    body = frame_body(candidate_payload('conv', 'resp', *(
        (f'c{n}', f'Answer {n}') for n in range(5))))
    reply = decode_response(body)
    assert reply.found == 5
    assert [a.choice_id for a in reply.answers] == ['c0', 'c1', 'c2']

def test_decode_response_null_ids():
    reply = decode_response(frame_body(candidate_payload(None, None, ('c1', 'hi'))))
    assert reply.answers == (Answer('hi', '', '', 'c1'),)

@pytest.mark.parametrize('body', [
    pytest.param('', id='empty'),
    pytest.param(")]}'\n\n123\n", id='no payload line'),
    pytest.param(")]}'\n\n123\nnot json\n", id='bad frame json'),
    pytest.param(")]}'\n\n123\n[]\n", id='empty frame'),
    pytest.param(")]}'\n\n123\n[[\"wrb.fr\",null,null]]\n", id='null payload'),
    pytest.param(")]}'\n\n123\n[[\"wrb.fr\",null,\"{\"]]\n", id='bad payload json'),
    pytest.param(frame_body([None, None]), id='no continuity'),
    pytest.param(frame_body(candidate_payload('c', 'r')), id='null candidates'),
    pytest.param(frame_body([None, ['c', 'r'], None, None, []]), id='empty candidates'),
    pytest.param(frame_body([None, ['c', 'r']]), id='absent candidates'),
    pytest.param(frame_body([None, ['c', 'r'], None, None, [['c1']]]), id='candidate without content'),
    pytest.param(frame_body([None, ['c', 'r'], None, None, [[7, ['x']]]]), id='bad choice id'),
    pytest.param(frame_body([None, ['c', 'r'], None, None, {'a': 1}]), id='candidates not a list'),
])
def test_decode_response_errors(body: str):
    with pytest.raises(DecodeError):
        _ = decode_response(body)
