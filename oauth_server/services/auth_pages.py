"""HTML for the browser half of the flow: login/register, consent, success.

Inline templates rendered with str.format; every interpolated value goes
through html.escape.  The forms post back to the routes in api/login.py:

  POST /oauth/login      username, password
  POST /oauth/register   username, password, passwordConfirm
  POST /oauth/authorize  action=approve|deny
"""

from __future__ import annotations

import html

SCOPE_DESCRIPTIONS = {
    "read": "Read your data",
    "write": "Modify your data",
    "admin": "Manage permissions",
}

_STYLE = """\
    * {{ margin: 0; padding: 0; box-sizing: border-box; }}
    body {{
      font-family: system-ui, -apple-system, sans-serif;
      display: flex; justify-content: center; align-items: center;
      min-height: 100vh; background: #f5f5f5;
    }}
    .card {{
      background: #fff; padding: 2rem; border-radius: 8px;
      box-shadow: 0 2px 8px rgba(0,0,0,.1); width: 360px;
    }}
    h1 {{ font-size: 1.25rem; margin-bottom: 1.25rem; text-align: center; }}
    label {{ display: block; font-size: .85rem; margin-bottom: .25rem; }}
    input[type=text], input[type=password] {{
      width: 100%; padding: .5rem; margin-bottom: 1rem;
      border: 1px solid #ccc; border-radius: 4px; font-size: .95rem;
    }}
    button {{
      width: 100%; padding: .6rem; background: #111; color: #fff;
      border: none; border-radius: 4px; font-size: .95rem; cursor: pointer;
    }}
    button.secondary {{ background: #fff; color: #111; border: 1px solid #111; }}
    .error {{ color: #c00; font-size: .85rem; margin-bottom: 1rem; }}
    .tabs {{ display: flex; gap: .5rem; margin-bottom: 1rem; }}
    .tabs label {{ flex: 1; text-align: center; padding: .4rem; cursor: pointer;
      border-bottom: 2px solid #ddd; }}
    #tab-register:checked ~ .login-form,
    #tab-login:checked ~ .register-form {{ display: none; }}
    .tab-input {{ display: none; }}
    ul {{ margin: 0 0 1.25rem 1.25rem; }}
    .actions {{ display: flex; gap: .5rem; }}
"""

_LOGIN_HTML = (
    """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Sign in</title>
  <style>
"""
    + _STYLE
    + """\
  </style>
</head>
<body>
  <div class="card">
    <h1>Sign in to continue</h1>
    {error}
    <input class="tab-input" type="radio" name="tab" id="tab-login" checked>
    <input class="tab-input" type="radio" name="tab" id="tab-register">
    <div class="tabs">
      <label for="tab-login">Login</label>
      <label for="tab-register">Register</label>
    </div>
    <form class="login-form" method="post" action="{login_action}">
      <label for="login-username">Username</label>
      <input id="login-username" name="username" type="text" required autofocus>
      <label for="login-password">Password</label>
      <input id="login-password" name="password" type="password" required>
      <button type="submit">Log in</button>
    </form>
    <form class="register-form" method="post" action="{register_action}">
      <label for="register-username">Username</label>
      <input id="register-username" name="username" type="text" required>
      <label for="register-password">Password</label>
      <input id="register-password" name="password" type="password" required>
      <label for="register-confirm">Confirm password</label>
      <input id="register-confirm" name="passwordConfirm" type="password" required>
      <button type="submit">Create account</button>
    </form>
  </div>
</body>
</html>
"""
)

_CONSENT_HTML = (
    """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Authorize {client_name}</title>
  <style>
"""
    + _STYLE
    + """\
  </style>
</head>
<body>
  <div class="card">
    <h1>Authorize {client_name}</h1>
    {error}
    <p><strong>{client_name}</strong> is requesting access to your account:</p>
    <ul>
{scope_items}
    </ul>
    <p>You will be redirected to <code>{redirect_uri}</code>.</p>
    <form method="post" action="{consent_action}">
      <div class="actions">
        <button type="submit" name="action" value="approve">Approve</button>
        <button class="secondary" type="submit" name="action" value="deny">Deny</button>
      </div>
    </form>
  </div>
</body>
</html>
"""
)

_SUCCESS_HTML = (
    """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>
"""
    + _STYLE
    + """\
  </style>
</head>
<body>
  <div class="card">
    <h1>{title}</h1>
    <p>{message}</p>
  </div>
</body>
</html>
"""
)


def _error_block(error: str | None) -> str:
    return f'<p class="error">{html.escape(error)}</p>' if error else ""


def render_login_page(
    error: str | None = None,
    *,
    login_action: str = "/oauth/login",
    register_action: str = "/oauth/register",
) -> str:
    return _LOGIN_HTML.format(
        error=_error_block(error),
        login_action=html.escape(login_action, quote=True),
        register_action=html.escape(register_action, quote=True),
    )


def render_consent_page(
    client_name: str,
    scopes: tuple[str, ...] | list[str],
    redirect_uri: str,
    error: str | None = None,
    *,
    consent_action: str = "/oauth/authorize",
) -> str:
    scope_items = "\n".join(
        f"      <li><strong>{html.escape(scope)}</strong>: "
        f"{html.escape(SCOPE_DESCRIPTIONS.get(scope, scope))}</li>"
        for scope in scopes
    )
    return _CONSENT_HTML.format(
        client_name=html.escape(client_name),
        error=_error_block(error),
        scope_items=scope_items,
        redirect_uri=html.escape(redirect_uri),
        consent_action=html.escape(consent_action, quote=True),
    )


def render_success_page(title: str, message: str) -> str:
    return _SUCCESS_HTML.format(title=html.escape(title), message=html.escape(message))
