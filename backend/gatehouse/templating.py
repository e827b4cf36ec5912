"""
Gatehouse — Template Environment
=================================

What:  The Jinja2 environment for the few pages Gatehouse renders itself
       (unauthorized, unauthorized feed, error pages, context shell).
How:   `fastapi.templating.Jinja2Templates` over the package's templates/
       directory. `template_exists` lets the rescue handler fall back to the
       generic 500 page when a status has no page of its own.
"""

from pathlib import Path

from fastapi.templating import Jinja2Templates
from jinja2 import TemplateNotFound

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATE_DIR))


def template_exists(name: str) -> bool:
    try:
        templates.env.get_template(name)
    except TemplateNotFound:
        return False
    return True
