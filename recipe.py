from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import cast, final

import yaml

class RecipeError(ValueError):
    pass

@final
@dataclass(frozen=True)
class Question:
    title: str
    question: str

@final
@dataclass(frozen=True)
class Recipe:
    manpages: tuple[str, ...] = ()
    questions: tuple[Question, ...] = ()

    def titles_and_questions(self):
        return OrderedDict((q.title, q.question) for q in self.questions)

    @classmethod
    def parse(cls, text: str):
        try:
            data = cast(object, yaml.safe_load(text))
        except yaml.YAMLError as err:
            raise RecipeError(f'failed to parse recipe YAML: {err}') from err

        if data is None: data = {}
        if not isinstance(data, dict):
            raise RecipeError(f'recipe must be a mapping, not {type(data).__name__}')
        data = cast(dict[str, object], data)

        manpages = data.get('manpages') or []
        if not isinstance(manpages, list):
            raise RecipeError('recipe manpages must be a list')
        names: list[str] = []
        for name in cast(list[object], manpages):
            if not isinstance(name, str):
                raise RecipeError(f'invalid manpage name {name!r}')
            names.append(name)

        raw_questions = data.get('questions') or []
        if not isinstance(raw_questions, list):
            raise RecipeError('recipe questions must be a list')
        questions: list[Question] = []
        for i, q in enumerate(cast(list[object], raw_questions)):
            if not isinstance(q, dict):
                raise RecipeError(f'question #{i+1} must be a mapping')
            q = cast(dict[str, object], q)
            title, question = q.get('title'), q.get('question')
            if not isinstance(title, str) or not isinstance(question, str):
                raise RecipeError(f'question #{i+1} must have string title and question')
            questions.append(Question(title, question))

        return cls(tuple(names), tuple(questions))

def read_recipe(path: str|Path):
    try:
        text = Path(path).read_text()
    except OSError as err:
        raise RecipeError(f'failed to read recipe {path}: {err}') from err
    return Recipe.parse(text)

import pytest

def test_parse_recipe():
    recipe = Recipe.parse('''
manpages:
  - grep
  - open
questions:
  - title: Overview
    question: Explain %MANPAGE%, see %URL%
  - title: Examples
    question: |
      Give examples of using %MANPAGE%.
''')
    assert recipe.manpages == ('grep', 'open')
    assert list(recipe.titles_and_questions().items()) == [
        ('Overview', 'Explain %MANPAGE%, see %URL%'),
        ('Examples', 'Give examples of using %MANPAGE%.\n'),
    ]

def test_parse_empty_recipe():
    recipe = Recipe.parse('')
    assert recipe.manpages == ()
    assert recipe.titles_and_questions() == {}

@pytest.mark.parametrize('text', [
    pytest.param('manpages: [grep', id='bad yaml'),
    pytest.param('- grep', id='not a mapping'),
    pytest.param('manpages: grep', id='manpages not a list'),
    pytest.param('manpages: [1]', id='manpage not a string'),
    pytest.param('questions: {title: x}', id='questions not a list'),
    pytest.param('questions: [x]', id='question not a mapping'),
    pytest.param('questions: [{title: x}]', id='question missing'),
])
def test_parse_recipe_errors(text: str):
    with pytest.raises(RecipeError):
        _ = Recipe.parse(text)

def test_read_recipe(tmp_path: Path):
    path = tmp_path / 'recipe.yaml'
    _ = path.write_text('manpages: [grep]\n')
    assert read_recipe(path).manpages == ('grep',)

    with pytest.raises(RecipeError):
        _ = read_recipe(tmp_path / 'missing.yaml')
