"""Change sources backed by a Playwright page.

The mutation source injects a ``MutationObserver`` into every document the
page loads and ships batched mutation records back through an exposed
binding. The navigation source listens to main-frame navigations, which
also covers history API changes.
"""

import json
import logging
from typing import Any, Dict, Iterable, List

from playwright.async_api import Frame, Page

from .sources import ChangeSource, MutationSource

logger = logging.getLogger(__name__)


_OBSERVER_SCRIPT = """
(() => {
  const binding = %(binding)s;
  const prefixes = %(prefixes)s;
  const maxBatch = %(max_batch)d;
  if (window.__featurehostObserverInstalled) return;
  window.__featurehostObserverInstalled = true;

  let pending = [];
  let scheduled = false;

  const hostIdOf = (element) => {
    for (let node = element; node && node.nodeType === 1; node = node.parentElement) {
      if (node.id && prefixes.some((prefix) => node.id.startsWith(prefix))) return node.id;
    }
    return "";
  };

  const flush = () => {
    scheduled = false;
    const batch = pending;
    pending = [];
    if (batch.length && typeof window[binding] === "function") {
      window[binding](batch);
    }
  };

  const install = () => {
    const observer = new MutationObserver((mutations) => {
      for (const mutation of mutations) {
        if (pending.length >= maxBatch) break;
        const target = mutation.target && mutation.target.nodeType === 1
          ? mutation.target
          : (mutation.target ? mutation.target.parentElement : null);
        pending.push({
          type: mutation.type,
          targetId: target && target.id ? target.id : "",
          hostId: hostIdOf(target),
          attributeName: mutation.attributeName || null,
          href: location.href,
        });
      }
      if (!scheduled && pending.length) {
        scheduled = true;
        setTimeout(flush, %(flush_ms)d);
      }
    });
    observer.observe(document, { subtree: true, childList: true, attributes: true, characterData: false });
  };

  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", install);
  } else {
    install();
  }
})();
"""


def build_observer_script(binding_name: str, ignored_id_prefixes: Iterable[str],
                          max_batch: int = 200, flush_ms: int = 50) -> str:
    """Render the in-page observer script."""
    return _OBSERVER_SCRIPT % {
        "binding": json.dumps(binding_name),
        "prefixes": json.dumps(list(ignored_id_prefixes)),
        "max_batch": max_batch,
        "flush_ms": flush_ms,
    }


class PlaywrightMutationSource(MutationSource):
    """Mutation source fed by an observer injected into a Playwright page."""

    binding_name = "__featurehostMutations"

    def __init__(self, page: Page, ignored_id_prefixes: Iterable[str] = ("featurehost-",),
                 ignored_attributes: Iterable[str] = ("style", "class", "aria-busy"),
                 max_batch: int = 200, flush_ms: int = 50):
        super().__init__(ignored_id_prefixes=ignored_id_prefixes, ignored_attributes=ignored_attributes)
        self.page = page
        self.max_batch = max_batch
        self.flush_ms = flush_ms
        self._binding_installed = False

    async def _on_start(self) -> None:
        script = build_observer_script(
            self.binding_name, self.ignored_id_prefixes,
            max_batch=self.max_batch, flush_ms=self.flush_ms,
        )
        if not self._binding_installed:
            # Bindings cannot be removed from a page; stop() only mutes it
            await self.page.expose_binding(self.binding_name, self._on_binding)
            await self.page.add_init_script(script)
            self._binding_installed = True
        try:
            await self.page.evaluate(script)
        except Exception as e:
            logger.warning(f"Could not install mutation observer in current document: {e}")

    def _on_binding(self, source: Dict[str, Any], records: List[Dict[str, Any]]) -> None:
        try:
            self.handle_mutations(records or [])
        except Exception as e:
            logger.error(f"Error processing mutation batch: {e}")


class PlaywrightNavigationSource(ChangeSource):
    """Reports main-frame navigations of a Playwright page."""

    name = "navigation"

    def __init__(self, page: Page):
        super().__init__()
        self.page = page

    async def _on_start(self) -> None:
        self.page.on("framenavigated", self._on_frame_navigated)

    async def _on_stop(self) -> None:
        self.page.remove_listener("framenavigated", self._on_frame_navigated)

    def _on_frame_navigated(self, frame: Frame) -> None:
        if frame == self.page.main_frame:
            self.emit(frame.url)
