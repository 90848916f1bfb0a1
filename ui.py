import math
import time
from collections.abc import Iterator
from pathlib import Path
from types import TracebackType
from typing import Callable, Protocol, TextIO, cast, final, override

class Logger(Protocol):
    def log(self, mess: str) -> None:
        pass

@final
class NullLogger:
    def log(self, mess: str) -> None:
        pass

def monotonic():
    return time.clock_gettime(time.CLOCK_MONOTONIC)

@final
class Timer:
    def __init__(self, start: float|None = None, clock: Callable[[], float] = monotonic):
        self.clock = clock
        self.start = clock() if start is None else start

    @property
    def now(self):
        return self.clock() - self.start

@final
class LogTime:
    def __init__(self,
            t1: float = math.nan,
            t2: float = math.nan,
            d2: float = math.nan):
        self.t1: float = t1
        self.t2: float = t2
        self.d2: float = d2

    def reset(self):
        self.__init__()

    def update(self, now: float):
        t2 = self.t2
        self.d2 = now - t2
        self.t1 = t2
        self.t2 = now

    @property
    def td_str(self):
        return '' if math.isnan(self.d2) else f'TD{int(self.d2 * 1e6)}'

    @property
    def t_str(self):
        return '' if math.isnan(self.t2) else f'T{self.t2}'

    @override
    def __str__(self):
        return self.td_str or self.t_str or 'None'

    @override
    def __repr__(self):
        return f'LogTime(t1={self.t1}, t2={self.t2}, d2={self.d2})'

def test_logtime():
    lt = LogTime()
    assert str(lt) == 'None'

    lt.update(1.5)
    assert str(lt) == 'T1.5'

    lt.update(2.0)
    assert str(lt) == 'TD500000'
    assert lt.t1 == 1.5

    lt.reset()
    assert str(lt) == 'None'

class PromptUI:
    @final
    class TestHarness:
        def __init__(self, clock: Iterator[float]|None = None):
            self.output: list[str] = []
            self.logs: list[str] = []
            ticks = clock if clock is not None else iter(float(n) for n in range(1_000_000))
            self.ui = PromptUI(
                time = Timer(start=0.0, clock=lambda: next(ticks)),
                sink = self.write,
                log_sink = self.log_write,
            )

        def __enter__(self):
            return self

        def __exit__(
            self,
            type_: type[BaseException] | None,
            value: BaseException | None,
            traceback: TracebackType | None,
        ) -> bool:
            self.clear()
            return False

        def clear(self):
            self.output = []
            self.logs = []

        def write(self, s: str):
            self.output.append(s)

        def log_write(self, s: str):
            self.logs.append(s)

        def all_output(self):
            return ''.join(self.output)

    def __init__(
        self,
        time: Timer|None = None,
        sink: Callable[[str], None]|None = None,
        log_file: TextIO|None = None,
        log_sink: Callable[[str], None]|None = None,
    ):
        if log_file is not None and log_sink is not None:
            raise ValueError('must provide either log_sink or log_file, not both')
        elif log_file is not None:
            log_sink = lambda mess: print(mess, file=log_file, flush=True)
        elif log_sink is None:
            log_sink = lambda _: None
        if sink is None:
            sink = lambda s: print(s, end='', flush=True)

        self.time = Timer() if time is None else time
        self._log_time = LogTime()

        self.sink = sink
        self.log_sink = log_sink

    def log(self, mess: str):
        self._log_time.update(self.time.now)
        self.log_sink(f'{self._log_time} {mess}')

    def print(self, mess: str):
        self.sink(mess + '\n')

import pytest

def test_prompt_ui():
    with PromptUI.TestHarness() as harness:
        ui = harness.ui

        ui.print('asking...')
        ui.print('')
        ui.print('done')
        assert harness.all_output() == 'asking...\n\ndone\n'

        ui.log('first')
        ui.log('second')
        ui.log('third')
        assert harness.logs == [
            'T0.0 first',
            'TD1000000 second',
            'TD1000000 third',
        ]

def test_prompt_ui_log_file(tmp_path: Path):
    log_path = tmp_path / 'run.log'
    with open(log_path, 'w') as f:
        ui = PromptUI(
            time=Timer(start=0.0, clock=lambda: 2.5),
            sink=lambda _: None,
            log_file=f)
        ui.log('hello')
    assert log_path.read_text() == 'T2.5 hello\n'

def test_prompt_ui_sinks_exclusive():
    with pytest.raises(ValueError):
        _ = PromptUI(log_file=cast(TextIO, object()), log_sink=lambda _: None)
