"""感知模块：把当前页面整理成 PageSnapshot"""

from typing import Any, Dict, List

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .errors import ActuatorError
from .models import FormInfo, InputInfo, InteractiveElement, LinkInfo, PageSnapshot


class Perception:
    """
    感知模块：通过 JS 注入一次性提取页面结构。

    - 可交互元素：可见性过滤 + 稳定的 CSS 选择器
      （data-qa / data-testid / id / name / aria-label，实在没有时退回 data-agent-id）
    - 链接、表单、按钮、meta description、可见文本
    """

    def __init__(self, max_elements: int = 100, max_text: int = 3000):
        self.max_elements = max_elements
        self.max_text = max_text
        self.last_element_id = 0

    async def capture(self, page: Page, tab_count: int = 1, active_tab: int = 0) -> PageSnapshot:
        try:
            result = await page.evaluate(
                _EXTRACT_JS,
                {"startId": self.last_element_id, "maxElements": self.max_elements, "maxText": self.max_text},
            )
            title = await page.title()
        except PlaywrightError as e:
            raise ActuatorError(f"failed to extract page info: {e}") from e

        self.last_element_id = result["lastId"]

        elements = tuple(_element(item) for item in result["elements"])
        buttons = tuple(_element(item) for item in result["buttons"])
        links = tuple(
            LinkInfo(text=item["text"], href=item["href"], selector=item["selector"])
            for item in result["links"]
        )
        forms = tuple(
            FormInfo(
                action=item["action"],
                method=item["method"],
                inputs=tuple(InputInfo(**inp) for inp in item["inputs"]),
                submit_text=item["submitText"],
            )
            for item in result["forms"]
        )

        text = result["text"]
        description = result["description"] or text[:500]

        return PageSnapshot(
            url=page.url,
            title=title,
            description=description,
            visible_text=text,
            interactive_elements=elements,
            links=links,
            forms=forms,
            buttons=buttons,
            tab_count=tab_count,
            active_tab=active_tab,
        )


def _element(item: Dict[str, Any]) -> InteractiveElement:
    return InteractiveElement(
        tag=item["tag"],
        text=item["text"],
        selector=item["selector"],
        is_visible=item["isVisible"],
        is_clickable=item["isClickable"],
        attributes=item.get("attributes") or {},
    )


def summarize_elements(elements: List[InteractiveElement], limit: int = 20) -> str:
    """生成元素文本摘要，给 LLM 看"""
    if not elements:
        return "（页面上未检测到可交互元素）"

    lines = []
    for i, el in enumerate(elements):
        if i >= limit:
            lines.append(f"... 以及另外 {len(elements) - i} 个元素")
            break
        flags = []
        if not el.is_visible:
            flags.append("hidden")
        if not el.is_clickable:
            flags.append("disabled")
        flag_str = f" [{', '.join(flags)}]" if flags else ""
        lines.append(f"- {el.tag}: \"{el.text}\" (selector: {el.selector}){flag_str}")
    return "\n".join(lines)


_EXTRACT_JS = """
({ startId, maxElements, maxText }) => {
    const isVisible = (el) => {
        if (!el) return false;
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        if (style.display === 'none') return false;
        if (style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity) === 0) return false;
        if (rect.width <= 0 || rect.height <= 0) return false;
        return true;
    };

    const getLabel = (el) => {
        const candidates = [
            (el.innerText || '').trim(),
            (el.value || '').trim(),
            el.getAttribute('placeholder') || '',
            el.getAttribute('aria-label') || '',
            el.getAttribute('title') || '',
            el.getAttribute('alt') || '',
            el.getAttribute('name') || '',
        ];
        const chosen = candidates.find(c => c.length > 0) || '';
        return chosen.length > 200 ? chosen.slice(0, 197) + '...' : chosen;
    };

    const quote = (v) => v.replace(/\\\\/g, '\\\\\\\\').replace(/"/g, '\\\\"');

    let currentId = startId;
    const selectorFor = (el) => {
        const tag = el.tagName.toLowerCase();
        if (el.getAttribute('data-qa')) return '[data-qa="' + quote(el.getAttribute('data-qa')) + '"]';
        if (el.getAttribute('data-testid')) return '[data-testid="' + quote(el.getAttribute('data-testid')) + '"]';
        if (el.id && /^[A-Za-z][\\w-]*$/.test(el.id)) return '#' + el.id;
        if (el.getAttribute('name')) return tag + '[name="' + quote(el.getAttribute('name')) + '"]';
        if (el.getAttribute('aria-label')) return tag + '[aria-label="' + quote(el.getAttribute('aria-label')) + '"]';
        // 没有稳定属性时打上 data-agent-id
        if (!el.getAttribute('data-agent-id')) {
            currentId += 1;
            el.setAttribute('data-agent-id', String(currentId));
        }
        return '[data-agent-id="' + el.getAttribute('data-agent-id') + '"]';
    };

    const attributesOf = (el) => {
        const attrs = {};
        for (const attr of Array.from(el.attributes)) {
            if (attr.name.startsWith('data-') || ['id', 'class', 'name', 'type', 'href', 'role'].includes(attr.name)) {
                attrs[attr.name] = String(attr.value).slice(0, 200);
            }
        }
        return attrs;
    };

    const describe = (el) => {
        const visible = isVisible(el);
        const disabled = el.disabled === true || el.getAttribute('aria-disabled') === 'true';
        return {
            tag: el.tagName.toLowerCase(),
            text: getLabel(el),
            selector: selectorFor(el),
            isVisible: visible,
            isClickable: visible && !disabled,
            attributes: attributesOf(el),
        };
    };

    // 可交互元素：有稳定选择器的排在前面
    const elements = [];
    const seen = new Set();
    const nodes = document.querySelectorAll(
        'button, a[href], input, textarea, select, [role="button"], [onclick], [data-testid], [data-qa]'
    );
    for (const el of nodes) {
        if (el.tagName === 'INPUT' && (el.getAttribute('type') || '').toLowerCase() === 'hidden') continue;
        if (!isVisible(el)) continue;
        const item = describe(el);
        if (seen.has(item.selector)) continue;
        seen.add(item.selector);
        elements.push(item);
    }
    const stable = (s) => s.startsWith('#') || s.includes('data-qa') || s.includes('data-testid');
    const ordered = elements.filter(e => stable(e.selector))
        .concat(elements.filter(e => !stable(e.selector)))
        .slice(0, maxElements);

    const buttons = [];
    for (const el of document.querySelectorAll('button, input[type="button"], input[type="submit"], [role="button"]')) {
        if (!isVisible(el)) continue;
        buttons.push(describe(el));
        if (buttons.length >= 50) break;
    }

    const links = [];
    const seenLinks = new Set();
    for (const a of document.querySelectorAll('a[href]')) {
        if (!isVisible(a)) continue;
        const text = (a.textContent || '').trim().slice(0, 150);
        const key = text + '|' + a.href;
        if (seenLinks.has(key)) continue;
        seenLinks.add(key);
        links.push({ text, href: a.href, selector: selectorFor(a) });
        if (links.length >= 100) break;
    }

    const forms = [];
    for (const form of document.querySelectorAll('form')) {
        const inputs = [];
        for (const input of form.querySelectorAll('input, textarea, select')) {
            const labelEl = input.id ? document.querySelector('label[for="' + quote(input.id) + '"]') : null;
            inputs.push({
                type: input.type || input.tagName.toLowerCase(),
                name: input.name || '',
                placeholder: input.placeholder || '',
                label: labelEl ? labelEl.innerText.trim() : '',
                value: input.type === 'password' ? '' : (input.value || ''),
            });
        }
        const submit = form.querySelector('button[type="submit"], input[type="submit"], button:not([type])');
        forms.push({
            action: form.action || '',
            method: (form.method || 'get').toLowerCase(),
            inputs,
            submitText: submit ? ((submit.textContent || submit.value || '').trim()) : '',
        });
    }

    const texts = [];
    if (document.body) {
        const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
            acceptNode: (node) => {
                const parent = node.parentElement;
                if (!parent) return NodeFilter.FILTER_REJECT;
                if (['SCRIPT', 'STYLE', 'NOSCRIPT'].includes(parent.tagName)) return NodeFilter.FILTER_REJECT;
                const style = window.getComputedStyle(parent);
                if (style.display === 'none' || style.visibility === 'hidden') return NodeFilter.FILTER_REJECT;
                return NodeFilter.FILTER_ACCEPT;
            }
        });
        let node;
        while ((node = walker.nextNode())) {
            const text = node.textContent.trim();
            if (text.length > 0) texts.push(text);
        }
    }

    const meta = document.querySelector('meta[name="description"]');

    return {
        elements: ordered,
        buttons,
        links,
        forms,
        text: texts.join(' ').slice(0, maxText),
        description: meta ? (meta.getAttribute('content') || '') : '',
        lastId: currentId,
    };
}
"""
