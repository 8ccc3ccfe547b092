import io

from app.finsync.models import User

PASSWORD = "secret-pw"


def user(s, email: str) -> User:
    return s.query(User).filter(User.email == email).one()


def login(client, email: str, password: str = PASSWORD):
    return client.post("/auth", data={"email": email, "password": password}, follow_redirects=False)


def csrf_headers(client) -> dict:
    with client.session_transaction() as sess:
        token = sess.get("csrf_token")
        if not token:
            token = "test-csrf-token"
            sess["csrf_token"] = token
    return {"X-CSRF-Token": token}


def csv_bytes(*rows) -> bytes:
    return "\n".join(",".join(str(c) for c in r) for r in rows).encode("utf-8")


def xlsx_bytes(*rows) -> bytes:
    from openpyxl import Workbook

    wb = Workbook()
    ws = wb.active
    ws.title = "Hoja1"
    for r in rows:
        ws.append(list(r))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
