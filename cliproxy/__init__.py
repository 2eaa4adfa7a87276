"""cliproxy - OpenAI-compatible bridge to the Claude CLI

Serves ``POST /v1/chat/completions`` (JSON and SSE streaming) by running the
``claude`` command-line tool as a subprocess per request.

This package provides:
- ClaudeCLI: spawns the CLI and exposes its output as lines or a buffered result
- StreamTranslator: turns CLI output into OpenAI chat-completion chunks
- An OpenAI-compatible FastAPI application (``cliproxy.main:app``)

Example:
    >>> from cliproxy.main import app
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

__version__ = "0.1.0"
