"""Cross-cutting helpers shared by every Lazyfill component."""
