"""JavaScript snippets evaluated in the chat tab.

Deep queries traverse open shadow roots and same-origin iframes. Cross-origin
frames are skipped (access throws). Templates use `__NAME__` placeholders that
`render()` fills with JSON-encoded values.
"""

from __future__ import annotations

import json
from typing import Any

from .dom_tree import MAX_TRAVERSAL_DEPTH

SIGNAL_BINDING = "__chatHelperSignal"

DEEP_QUERY_JS = r"""
const __chCollectRoots = (start) => {
  const roots = [];
  const queue = [{ root: start, depth: 0 }];
  const MAX_ROOTS = 80;
  const MAX_DEPTH = __MAX_DEPTH__;
  const MAX_SCAN = 6000;

  while (queue.length && roots.length < MAX_ROOTS) {
    const item = queue.shift();
    const root = item && item.root;
    const depth = item && typeof item.depth === 'number' ? item.depth : 0;
    if (!root || roots.includes(root)) continue;
    roots.push(root);
    if (depth >= MAX_DEPTH || !root.querySelectorAll) continue;

    let scanned = 0;
    for (const el of root.querySelectorAll('*')) {
      scanned += 1;
      if (scanned > MAX_SCAN) break;
      if (el && el.shadowRoot) queue.push({ root: el.shadowRoot, depth: depth + 1 });
      if (el && (el.tagName === 'IFRAME' || el.tagName === 'FRAME')) {
        try {
          const doc = el.contentDocument || (el.contentWindow && el.contentWindow.document);
          if (doc) queue.push({ root: doc, depth: depth + 1 });
        } catch (e) {
          // Cross-origin frame; ignore.
        }
      }
    }
  }
  return roots;
};

const __chIsVisible = (el) => {
  try {
    if (!el || !el.getBoundingClientRect) return false;
    const r = el.getBoundingClientRect();
    if (r.width <= 0 || r.height <= 0) return false;
    const style = globalThis.getComputedStyle ? globalThis.getComputedStyle(el) : null;
    if (!style) return true;
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    return Number(style.opacity || '1') !== 0;
  } catch (e) {
    return false;
  }
};

const __chQueryAllDeep = (selector) => {
  const out = [];
  for (const r of __chCollectRoots(document)) {
    try {
      out.push(...Array.from(r.querySelectorAll(selector)));
    } catch (e) {
      // Invalid selector for this root; treat as no match.
    }
  }
  return out;
};

const __chResolve = (selector, index) => {
  const nodes = __chQueryAllDeep(selector);
  const visible = nodes.filter(__chIsVisible);
  const pickFrom = visible.length ? visible : nodes;
  return pickFrom[index] || null;
};
""".replace("__MAX_DEPTH__", str(MAX_TRAVERSAL_DEPTH))

FIND_FIRST_JS = r"""
(() => {
  __DEEP_QUERY__
  const selectors = __SELECTORS__;
  const visibleOnly = __VISIBLE_ONLY__;
  for (const selector of selectors) {
    const nodes = __chQueryAllDeep(selector);
    const visible = nodes.filter(__chIsVisible);
    const pickFrom = visible.length ? visible : (visibleOnly ? [] : nodes);
    if (pickFrom.length) return { selector, index: 0, tagName: pickFrom[0].tagName };
  }
  return null;
})()
"""

ELEMENT_ACTION_JS = r"""
(() => {
  __DEEP_QUERY__
  const el = __chResolve(__SELECTOR__, __INDEX__);
  if (!el) return { ok: false, reason: 'not_found' };
  const action = __ACTION__;
  const text = __TEXT__;
  const isField = el.tagName === 'TEXTAREA' || el.tagName === 'INPUT';
  const fire = (name) => el.dispatchEvent(new Event(name, { bubbles: true }));
  try {
    if (action === 'click') {
      el.click();
    } else if (action === 'focus') {
      el.focus();
    } else if (action === 'enter') {
      el.focus();
      for (const type of ['keydown', 'keypress', 'keyup']) {
        el.dispatchEvent(new KeyboardEvent(type, { key: 'Enter', code: 'Enter', keyCode: 13, which: 13, bubbles: true }));
      }
    } else if (action === 'clear') {
      el.focus();
      if (isField) {
        el.value = '';
      } else {
        document.execCommand('selectAll', false, undefined);
        document.execCommand('delete', false, undefined);
      }
      fire('input');
    } else if (action === 'insert') {
      el.click();
      el.focus();
      let inserted = false;
      try {
        document.execCommand('selectAll', false, undefined);
        inserted = document.execCommand('insertText', false, text);
      } catch (e) {
        inserted = false;
      }
      if (!inserted) {
        if (isField) el.value = text; else el.textContent = text;
        fire('input');
        fire('change');
      }
    } else {
      return { ok: false, reason: 'unknown_action' };
    }
  } catch (e) {
    return { ok: false, reason: String(e && e.message || e) };
  }
  return { ok: true };
})()
"""

ANY_VISIBLE_JS = r"""
(() => {
  __DEEP_QUERY__
  for (const selector of __SELECTORS__) {
    if (__chQueryAllDeep(selector).some(__chIsVisible)) return true;
  }
  return false;
})()
"""

FIRST_TEXT_JS = r"""
(() => {
  __DEEP_QUERY__
  for (const selector of __SELECTORS__) {
    for (const el of __chQueryAllDeep(selector)) {
      const text = (el.textContent || '').trim();
      if (text) return text;
    }
  }
  return null;
})()
"""

USER_AWAY_JS = (
    "(() => document.hidden || !document.hasFocus() || document.visibilityState !== 'visible')()"
)

SET_TITLE_JS = "(() => { document.title = __TITLE__; return document.title; })()"

TOAST_JS = r"""
(() => {
  const existing = document.getElementById('ch-toast');
  if (existing) existing.remove();
  const toast = document.createElement('div');
  toast.id = 'ch-toast';
  toast.textContent = __MESSAGE__;
  Object.assign(toast.style, {
    position: 'fixed', top: '32px', left: '50%', transform: 'translateX(-50%)',
    background: '#1f6feb', color: 'white', padding: '10px 24px', borderRadius: '9999px',
    fontSize: '14px', zIndex: '2147483647', pointerEvents: 'none', opacity: '0',
    transition: 'opacity 0.3s ease',
  });
  (document.body || document.documentElement).appendChild(toast);
  requestAnimationFrame(() => { toast.style.opacity = '1'; });
  setTimeout(() => {
    toast.style.opacity = '0';
    setTimeout(() => toast.remove(), 300);
  }, __DURATION__);
  return true;
})()
"""

NOTIFY_JS = r"""
(() => {
  try {
    if (typeof Notification === 'undefined') return false;
    if (Notification.permission !== 'granted') return false;
    new Notification(__TITLE__, { body: __BODY__ });
    return true;
  } catch (e) {
    return false;
  }
})()
"""

SOUND_JS = r"""
(() => {
  try {
    const Ctx = window.AudioContext || window.webkitAudioContext;
    if (!Ctx) return false;
    const ctx = new Ctx();
    const osc = ctx.createOscillator();
    const gain = ctx.createGain();
    osc.type = 'sine';
    osc.frequency.value = 880;
    gain.gain.value = __VOLUME__;
    osc.connect(gain);
    gain.connect(ctx.destination);
    osc.start();
    gain.gain.exponentialRampToValueAtTime(0.0001, ctx.currentTime + 0.6);
    osc.stop(ctx.currentTime + 0.6);
    return true;
  } catch (e) {
    return false;
  }
})()
"""

SIGNAL_SCRIPT = r"""
(() => {
  if (window.__chatHelperSignalsInstalled) return true;
  window.__chatHelperSignalsInstalled = true;
  const containers = __CONTAINERS__;
  const send = (kind, data) => {
    try {
      const fn = window[__BINDING__];
      if (typeof fn === 'function') fn(JSON.stringify(Object.assign({ kind }, data || {})));
    } catch (e) {
      // Binding gone (detached); ignore.
    }
  };
  const isContainer = (el) => {
    if (!el || el === document || el === document.scrollingElement) return true;
    if (!containers.length || !el.matches) return !containers.length;
    return containers.some((sel) => { try { return el.matches(sel); } catch (e) { return false; } });
  };
  document.addEventListener('visibilitychange', () => send('visibility', { visible: document.visibilityState === 'visible' }), true);
  window.addEventListener('focus', () => send('focus', {}), true);
  window.addEventListener('blur', () => send('blur', {}), true);
  window.addEventListener('wheel', (e) => send('wheel', { deltaY: e.deltaY }), { passive: true, capture: true });
  let pending = false;
  document.addEventListener('scroll', (e) => {
    const target = e.target;
    if (!isContainer(target) || pending) return;
    pending = true;
    requestAnimationFrame(() => {
      pending = false;
      const el = (target && target !== document && target.scrollHeight !== undefined)
        ? target
        : (document.scrollingElement || document.documentElement);
      if (!el) return;
      send('scroll', { distanceFromBottom: Math.max(0, el.scrollHeight - el.scrollTop - el.clientHeight) });
    });
  }, { passive: true, capture: true });
  return true;
})()
"""

# Two layers, both idle unless window.__chatHelperScrollLockEnabled is true:
# the page's own scroll APIs are wrapped (downward jumps > 50px dropped), and
# jumps that bypass the wrappers are rolled back to the last position the
# user scrolled to (> 100px when chat content is added, > 200px on a 500ms
# sweep). Targets come from window.__chatHelperScrollLockConfig.
SCROLL_LOCK_SCRIPT = r"""
(() => {
  if (window.__chatHelperScrollLockInstalled) return true;
  window.__chatHelperScrollLockInstalled = true;
  window.__chatHelperScrollLockEnabled = false;
  const original = {
    scrollIntoView: Element.prototype.scrollIntoView,
    scrollTo: window.scrollTo.bind(window),
    scrollTop: Object.getOwnPropertyDescriptor(Element.prototype, 'scrollTop'),
  };
  const locked = () => window.__chatHelperScrollLockEnabled === true;

  Element.prototype.scrollIntoView = function (options) {
    if (locked() && !(options && typeof options === 'object' && options.__bypassLock)) return;
    return original.scrollIntoView.call(this, options);
  };
  window.scrollTo = function (x, y) {
    const targetY = (typeof x === 'object' && x !== null) ? x.top : y;
    if (locked() && typeof targetY === 'number' && targetY > window.scrollY + 50) return;
    return original.scrollTo.apply(window, arguments);
  };
  if (original.scrollTop && original.scrollTop.set) {
    const desc = original.scrollTop;
    Object.defineProperty(Element.prototype, 'scrollTop', {
      get: function () { return desc.get.call(this); },
      set: function (value) {
        if (locked() && value > desc.get.call(this) + 50) return;
        desc.set.call(this, value);
      },
      configurable: true,
    });
  }

  // Rollback layer.
  const config = () => window.__chatHelperScrollLockConfig || {};
  const container = () => {
    for (const selector of config().containers || []) {
      let el = null;
      try { el = document.querySelector(selector); } catch (e) { el = null; }
      if (el && el.scrollHeight > el.clientHeight) return el;
    }
    return document.scrollingElement || document.documentElement;
  };
  const readTop = (el) => (original.scrollTop && original.scrollTop.get) ? original.scrollTop.get.call(el) : el.scrollTop;
  const writeTop = (el, value) => {
    if (original.scrollTop && original.scrollTop.set) original.scrollTop.set.call(el, value);
    else el.scrollTop = value;
  };
  let lastTop = null;
  const remember = () => {
    const el = container();
    lastTop = el ? readTop(el) : null;
  };
  const rollback = (limit, adopt) => {
    if (!locked()) return;
    const el = container();
    if (!el) return;
    if (lastTop === null) { lastTop = readTop(el); return; }
    const current = readTop(el);
    if (current > lastTop + limit) writeTop(el, lastTop);
    else if (adopt) lastTop = current;
  };
  window.__chatHelperScrollLockArm = remember;

  window.addEventListener('scroll', () => { if (locked()) remember(); }, { passive: true, capture: true });

  const isContent = (node) => {
    if (!node || node.nodeType !== 1) return false;
    const selectors = config().content || [];
    if (!selectors.length) return true;
    for (const selector of selectors) {
      try {
        if ((node.matches && node.matches(selector)) || (node.querySelector && node.querySelector(selector))) return true;
      } catch (e) {}
    }
    return false;
  };
  new MutationObserver((mutations) => {
    if (!locked()) return;
    for (const m of mutations) {
      if (m.type !== 'childList') continue;
      for (const node of m.addedNodes) {
        if (isContent(node)) { rollback(100, false); return; }
      }
    }
  }).observe(document.documentElement, { childList: true, subtree: true });

  setInterval(() => rollback(200, true), 500);
  return true;
})()
"""

SET_SCROLL_LOCK_JS = r"""
(() => {
  const cfg = __CONFIG__;
  window.__chatHelperScrollLockConfig = cfg;
  window.__chatHelperScrollLockEnabled = cfg.enabled;
  if (cfg.enabled && window.__chatHelperScrollLockArm) window.__chatHelperScrollLockArm();
  return true;
})()
"""

SCROLL_METRICS_JS = r"""
(() => {
  __DEEP_QUERY__
  let el = null;
  for (const selector of __SELECTORS__) {
    el = __chQueryAllDeep(selector).find((n) => n.scrollHeight > n.clientHeight) || null;
    if (el) break;
  }
  el = el || document.scrollingElement || document.documentElement;
  if (!el) return null;
  return {
    scrollTop: el.scrollTop,
    scrollHeight: el.scrollHeight,
    clientHeight: el.clientHeight,
    distanceFromBottom: Math.max(0, el.scrollHeight - el.scrollTop - el.clientHeight),
  };
})()
"""


def render(template: str, **values: Any) -> str:
    """Inline DEEP_QUERY_JS and fill the other `__NAME__` placeholders with JSON values."""
    out = template
    if "__DEEP_QUERY__" in out:
        out = out.replace("__DEEP_QUERY__", DEEP_QUERY_JS)
    for key, value in values.items():
        out = out.replace(f"__{key.upper()}__", json.dumps(value, ensure_ascii=False))
    return out


__all__ = [
    "ANY_VISIBLE_JS",
    "DEEP_QUERY_JS",
    "ELEMENT_ACTION_JS",
    "FIND_FIRST_JS",
    "FIRST_TEXT_JS",
    "NOTIFY_JS",
    "SCROLL_LOCK_SCRIPT",
    "SCROLL_METRICS_JS",
    "SET_SCROLL_LOCK_JS",
    "SET_TITLE_JS",
    "SIGNAL_BINDING",
    "SIGNAL_SCRIPT",
    "SOUND_JS",
    "TOAST_JS",
    "USER_AWAY_JS",
    "render",
]
