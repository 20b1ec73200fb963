"""
Inline HTML pages for the interaction flow. Every dynamic value goes through html.escape.
"""
import html


def e(s) -> str:
    return html.escape("" if s is None else str(s))


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{e(title)}</title></head>
<body>
{body}
</body>
</html>"""


def _cancel_form(uid: str, label: str) -> str:
    return f"""  <form method="post" action="/interaction/{e(uid)}/cancel" style="display:inline;">
    <button type="submit">{e(label)}</button>
  </form>"""


def render_login_page(uid: str, client_id: str, error: str | None = None, email: str = "") -> str:
    """Login form; the password field is never pre-filled."""
    error_html = f'  <p style="color:red;">{e(error)}</p>\n' if error else ""
    body = f"""  <h1>Log in</h1>
  <p>Sign in to continue to <strong>{e(client_id)}</strong>.</p>
{error_html}  <form method="post" action="/interaction/{e(uid)}/login">
    <label>Email: <input type="email" name="email" value="{e(email)}" autocomplete="username" required/></label><br/>
    <label>Password: <input type="password" name="password" autocomplete="current-password" required/></label><br/>
    <button type="submit">Log in</button>
  </form>
{_cancel_form(uid, "Cancel")}"""
    return _page("Log in", body)


def render_consent_page(
    uid: str,
    client_id: str,
    scopes: list[str],
    missing_resource_scopes: dict[str, tuple[str, ...]] | None = None,
) -> str:
    scope_items = "".join(f"<li>{e(s)}</li>" for s in scopes) or "<li>(none)</li>"
    resource_items = "".join(
        f"<li>{e(indicator)}: {e(' '.join(scopes))}</li>" for indicator, scopes in (missing_resource_scopes or {}).items()
    )
    resource_html = f"  <p>For these APIs:</p>\n  <ul>{resource_items}</ul>\n" if resource_items else ""
    body = f"""  <h1>Consent</h1>
  <p><strong>{e(client_id)}</strong> requests the following scopes:</p>
  <ul>{scope_items}</ul>
{resource_html}  <form method="post" action="/interaction/{e(uid)}/confirm" style="display:inline;">
    <button type="submit">Allow</button>
  </form>
{_cancel_form(uid, "Deny")}"""
    return _page("Consent", body)


def render_error_page(message: str = "The request could not be processed.") -> str:
    return _page("Invalid request", f"  <h1>Invalid request</h1>\n  <p>{e(message)}</p>")


def render_logged_out_page() -> str:
    return _page("Signed out", "  <h1>Signed out</h1>\n  <p>You have been signed out.</p>")
