# core/template_engine.py
"""
Email Template Engine

Renders the fixed transactional templates under ``core/templates/email``
with autoescaping, inlines their CSS for mail clients and derives a
plain-text alternative.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict

import premailer
from bs4 import BeautifulSoup
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError, UndefinedError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates' / 'email'

STATUS_COLORS = {
    'PENDING_APPROVAL': '#f59e0b',
    'PROCESSING': '#3b82f6',
    'OUT_FOR_DELIVERY': '#8b5cf6',
    'COMPLETED': '#10b981',
    'CANCELLED': '#ef4444',
    'REJECTED': '#ef4444',
}


@dataclass
class RenderedEmail:
    """Result of template rendering operation"""
    html: str
    text: str
    render_time_ms: float


def _money(value) -> str:
    amount = Decimal(str(value or 0))
    return f'{amount:,.2f}'.rstrip('0').rstrip('.')


class EmailTemplateEngine:
    """
    Jinja2 environment for the transactional email templates
    """

    def __init__(self, template_dir: Path = TEMPLATE_DIR, enable_css_inlining: bool = True):
        self.enable_css_inlining = enable_css_inlining

        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml']),
            undefined=StrictUndefined,  # Fail on undefined variables
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters['money'] = _money

    def render(self, template_name: str, variables: Dict[str, Any]) -> RenderedEmail:
        """
        Render one template

        Args:
            template_name: File name under the template directory
            variables: Template variables
        """
        start_time = datetime.now()
        context = {'year': datetime.now().year, 'accent_color': '#2563eb'}
        context.update(variables)

        try:
            rendered_html = self.env.get_template(template_name).render(**context)
        except UndefinedError as e:
            raise TemplateError(f"Template variable error: {str(e)}")

        if self.enable_css_inlining:
            rendered_html = self._inline_css(rendered_html)

        render_time_ms = (datetime.now() - start_time).total_seconds() * 1000
        logger.debug(f"Template {template_name} rendered in {render_time_ms:.2f}ms")
        return RenderedEmail(html=rendered_html, text=self._html_to_text(rendered_html),
                             render_time_ms=render_time_ms)

    def _inline_css(self, html_content: str) -> str:
        """
        Inline CSS styles for better email client compatibility
        """
        try:
            p = premailer.Premailer(
                html_content,
                remove_classes=False,
                keep_style_tags=True,
                strip_important=False,
                disable_validation=True,
                cssutils_logging_level=logging.CRITICAL,
            )
            return p.transform()
        except Exception as e:
            logger.warning(f"CSS inlining failed: {str(e)}")
            return html_content

    def _html_to_text(self, html_content: str) -> str:
        """
        Convert HTML to plain text for the multipart alternative
        """
        soup = BeautifulSoup(html_content, 'html.parser')
        for tag in soup(['style', 'head']):
            tag.decompose()

        for br in soup.find_all('br'):
            br.replace_with('\n')

        for li in soup.find_all('li'):
            li.insert_before('- ')

        for link in soup.find_all('a', href=True):
            link_text = link.get_text().strip()
            href = link['href']
            if href != link_text:
                link.replace_with(f"{link_text} ({href})")

        text = soup.get_text()
        text = re.sub(r'[ \t]+', ' ', text)
        text = re.sub(r'\n\s*\n+', '\n\n', text)
        return text.strip()
