"""感知模块：读取页面上的输入框，用于搜索失败时的诊断"""

from typing import List

from playwright.async_api import Page

from .models import InputSnapshot

INPUT_INVENTORY_JS = """
() => {
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

    // 给每个元素生成一个可读的选择器提示
    const selectorHint = (el) => {
        const tag = el.tagName.toLowerCase();
        if (el.id) return `${tag}#${el.id}`;
        const name = el.getAttribute('name');
        if (name) return `${tag}[name="${name}"]`;
        const cls = (el.getAttribute('class') || '').trim().split(/\\s+/).filter(Boolean)[0];
        if (cls) return `${tag}.${cls}`;
        const type = el.getAttribute('type');
        if (type) return `${tag}[type="${type}"]`;
        return tag;
    };

    const items = [];
    const nodes = document.querySelectorAll('input, textarea');
    nodes.forEach((el, index) => {
        items.push({
            index,
            selector: selectorHint(el),
            tag: el.tagName.toLowerCase(),
            name: el.getAttribute('name'),
            input_type: el.getAttribute('type'),
            placeholder: el.getAttribute('placeholder'),
            element_id: el.id || null,
            class_name: el.getAttribute('class'),
            aria_label: el.getAttribute('aria-label'),
            visible: isVisible(el),
        });
    });
    return items;
}
"""


class Perception:
    """感知模块：一次 evaluate 取回页面上的全部输入框"""

    async def inventory_inputs(self, page: Page) -> List[InputSnapshot]:
        items = await page.evaluate(INPUT_INVENTORY_JS)
        return [
            InputSnapshot(
                index=item["index"],
                selector=item["selector"],
                tag=item["tag"],
                name=item.get("name"),
                input_type=item.get("input_type"),
                placeholder=item.get("placeholder"),
                element_id=item.get("element_id"),
                class_name=item.get("class_name"),
                aria_label=item.get("aria_label"),
                visible=bool(item.get("visible")),
            )
            for item in items or []
        ]

    def summarize(self, snapshots: List[InputSnapshot]) -> str:
        """生成文本摘要，写日志用"""
        lines = []
        for snap in snapshots:
            hidden_str = "" if snap.visible else " [HIDDEN]"
            label = snap.placeholder or snap.aria_label or snap.name or "(无文本)"
            lines.append(f"[{snap.index}] {snap.selector}: \"{label}\"{hidden_str}")
        return "\n".join(lines)
