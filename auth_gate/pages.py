"""
HTML for the challenge pages. Every interpolated value goes through html.escape.
"""
import html

_STYLE = """
    body { background: #0f172a; color: #f1f5f9; font-family: system-ui, sans-serif;
           display: flex; justify-content: center; align-items: center; height: 100vh; margin: 0; }
    .container { background: #1e293b; padding: 2rem; border-radius: 1rem; width: 100%;
                 max-width: 400px; text-align: center; }
    p { color: #94a3b8; }
    input { width: 100%; padding: 0.75rem; margin-bottom: 1rem; box-sizing: border-box;
            font-size: 1rem; text-align: center; letter-spacing: 2px; }
    button { width: 100%; padding: 0.75rem; border: none; border-radius: 0.5rem;
             background: #3b82f6; color: white; font-weight: 600; cursor: pointer; }
    .error { color: #ef4444; }
    .success { color: #22c55e; }
    .resend button { background: none; color: #64748b; width: auto; text-decoration: underline; }
"""


def e(s: str | None) -> str:
    return html.escape(s or "")


def _messages(error: str | None, message: str | None) -> str:
    parts = []
    if error:
        parts.append(f'<p class="message error">{e(error)}</p>')
    if message:
        parts.append(f'<p class="message success">{e(message)}</p>')
    return "\n      ".join(parts)


def _document(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{e(title)}</title>
  <style>{_STYLE}</style>
</head>
<body>
  <div class="container">
{body}
  </div>
</body>
</html>"""


def login_page(prefix: str, redirect_url: str, error: str | None = None, message: str | None = None) -> str:
    """Entry page: one button asking for a code to be sent."""
    body = f"""    <h1>🔐 Protected Resource</h1>
    <form action="{e(prefix)}/request-code" method="post">
      <input type="hidden" name="redirect_url" value="{e(redirect_url)}"/>
      <p>This resource is protected. Please request an access code to continue.</p>
      {_messages(error, message)}
      <button type="submit">Send Access Code</button>
    </form>"""
    return _document("Restricted Access", body)


def verify_page(
    prefix: str,
    redirect_url: str,
    code_length: int,
    error: str | None = None,
    message: str | None = None,
) -> str:
    """Code entry page, with a resend link back to the login page."""
    body = f"""    <h1>🔐 Verify Code</h1>
    <form action="{e(prefix)}/verify-code" method="post">
      <input type="hidden" name="redirect_url" value="{e(redirect_url)}"/>
      <p>A code has been sent to your configured notification channel.</p>
      <input type="text" name="code" placeholder="Enter code" inputmode="numeric"
             pattern="[0-9]{{{code_length}}}" maxlength="{code_length}" minlength="{code_length}"
             autofocus required autocomplete="off"/>
      {_messages(error, message)}
      <button type="submit">Verify Code</button>
    </form>
    <div class="resend">
      <form action="{e(prefix)}/login" method="get">
        <input type="hidden" name="redirect_url" value="{e(redirect_url)}"/>
        <button type="submit">Resend Code</button>
      </form>
    </div>"""
    return _document("Verify Access", body)


def logged_out_page(prefix: str) -> str:
    body = f"""    <h1>Logged out</h1>
    <p>Your session has ended.</p>
    <p><a href="{e(prefix)}/login">Log in again</a></p>"""
    return _document("Logged out", body)
