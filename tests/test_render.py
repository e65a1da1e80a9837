import io

from wasession.render import QRRenderer

CODE = "2@ref-one,bm9pc2U,aWRlbnRpdHk,YWR2"


def test_qr_is_written_to_destination():
    out = io.StringIO()
    QRRenderer().render(CODE, out)

    lines = out.getvalue().splitlines()
    assert lines[0] == QRRenderer.heading
    assert len(lines) > 10
    assert any(ch in "█▀▄" for ch in "".join(lines[1:]))


def test_each_code_renders_differently():
    first, second = io.StringIO(), io.StringIO()
    QRRenderer().render(CODE, first)
    QRRenderer().render(CODE.replace("ref-one", "ref-two"), second)

    assert first.getvalue() != second.getvalue()
