# flake8: noqa: E501

from typing import Sequence

from .request import CompletionRequest, Message, Role, Text, strip_pending_tool_use
from .types import DEFAULT_FENCE, Fence


class EditPrompts:
    edit_prompt = """You are an expert engineer and your task is to write the code changes described in the instructions at the end of this message.

Describe every change with a *SEARCH/REPLACE block*, per the example below.
Anything outside of a block is treated as commentary and ignored.

# *SEARCH/REPLACE block* Rules:

Every *SEARCH/REPLACE block* must use this format:
1. The *FULL* file path alone on a line, verbatim, starting with one of the project's root directories. No bold asterisks, no quotes around it, no escaping of characters.
2. The opening fence and code language, eg: {fence[0]}python
3. The start of search block: <<<<<<< SEARCH
4. A contiguous chunk of lines to search for in the existing source code
5. The dividing line: =======
6. The lines to replace into the source code
7. The end of the replace block: >>>>>>> REPLACE
8. The closing fence: {fence[1]}

Every *SEARCH* section must *EXACTLY MATCH* the existing file content, character for character, including all comments, docstrings, whitespace and indentation.
*SEARCH/REPLACE* blocks will *only* replace the first match occurrence.
Include enough lines in each SEARCH section to uniquely match each set of lines that need to change.
Keep blocks concise: include just the changing lines, and a few surrounding lines if needed for uniqueness.

Edits are applied in the order you write them. A later block sees the file as changed by the earlier ones.

To create a new file, or to replace a whole file, use a *SEARCH/REPLACE block* with:
- The file path
- An empty `SEARCH` section
- The complete file contents in the `REPLACE` section

A whole file can also be written with a WRITE block:
{fence[0]}python
path/to/file.py
<<<<<<< WRITE
the complete file contents
>>>>>>> WRITE
{fence[1]}

# Example

Instructions: Change get_factorial() in mathweb/flask/app.py to use math.factorial, and move hello() from main.py to a new file hello.py.

mathweb/flask/app.py
{fence[0]}python
<<<<<<< SEARCH
from flask import Flask
=======
import math
from flask import Flask
>>>>>>> REPLACE
{fence[1]}

mathweb/flask/app.py
{fence[0]}python
<<<<<<< SEARCH
    return str(factorial(n))
=======
    return str(math.factorial(n))
>>>>>>> REPLACE
{fence[1]}

hello.py
{fence[0]}python
<<<<<<< SEARCH
=======
def hello():
    "print a greeting"

    print("hello")
>>>>>>> REPLACE
{fence[1]}

main.py
{fence[0]}python
<<<<<<< SEARCH
def hello():
    "print a greeting"

    print("hello")
=======
from hello import hello
>>>>>>> REPLACE
{fence[1]}

# Instructions

"""


def render_prompt(template: str, *, fence: Fence = DEFAULT_FENCE) -> str:
    return template.format(fence=fence)


def build_edit_request(
    messages: Sequence[Message],
    instructions: str,
    *,
    prompts: type[EditPrompts] = EditPrompts,
    fence: Fence = DEFAULT_FENCE,
    temperature: float | None = 0.0,
) -> CompletionRequest:
    """Return the request asking the model for edit blocks that carry out ``instructions``.

    The conversation so far is kept as context. The trailing tool use that
    triggered this edit is dropped so the request stays valid.
    """
    request_messages = strip_pending_tool_use(list(messages))
    request_messages.append(
        Message(
            role=Role.USER,
            content=[Text(render_prompt(prompts.edit_prompt, fence=fence)), Text(instructions)],
        )
    )
    return CompletionRequest(messages=request_messages, temperature=temperature)
