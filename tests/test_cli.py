import fitz

from conftest import make_pdf
from recompress_pdf import main


def test_single_file(tmp_path):
    src = tmp_path / "scan.pdf"
    src.write_bytes(make_pdf([(300, 400)] * 2))
    out = tmp_path / "small.pdf"

    assert main([str(src), "-o", str(out), "--tier", "low"]) == 0

    with fitz.open(out) as doc:
        assert doc.page_count == 2


def test_default_output_name(tmp_path):
    src = tmp_path / "scan.pdf"
    src.write_bytes(make_pdf([(300, 400)]))

    assert main([str(src)]) == 0
    assert (tmp_path / "scan_compressed.pdf").exists()


def test_missing_input(tmp_path):
    assert main([str(tmp_path / "nope.pdf")]) == 1


def test_broken_input_with_fallback(tmp_path):
    src = tmp_path / "broken.pdf"
    src.write_bytes(b"not a pdf")
    out = tmp_path / "out.pdf"

    assert main([str(src), "-o", str(out)]) == 1
    assert main([str(src), "-o", str(out), "--fallback-original"]) == 0
    assert out.read_bytes() == b"not a pdf"


def test_output_dir_with_title_names(tmp_path):
    a = tmp_path / "a.pdf"
    b = tmp_path / "b.pdf"
    a.write_bytes(make_pdf([(200, 200)], title="Invoice"))
    b.write_bytes(make_pdf([(200, 200)]))
    out_dir = tmp_path / "out"

    assert main([str(a), str(b), "--output-dir", str(out_dir), "--title-names"]) == 0

    names = sorted(p.name for p in out_dir.iterdir())
    assert "Invoice.pdf" in names
    assert len(names) == 2


def test_subsample_mode(tmp_path):
    src = tmp_path / "wide.pdf"
    src.write_bytes(make_pdf([(400, 100)]))
    out = tmp_path / "narrow.pdf"

    assert main([str(src), "-o", str(out), "--subsample", "4"]) == 0

    with fitz.open(out) as doc:
        assert doc[0].get_images()[0][2:4] == (100, 100)


def test_invalid_batch_size(tmp_path):
    src = tmp_path / "scan.pdf"
    src.write_bytes(make_pdf([(300, 400)]))
    assert main([str(src), "--batch-size", "0"]) == 1


def test_untitled_inputs_get_distinct_names(tmp_path):
    a = tmp_path / "a.pdf"
    b = tmp_path / "b.pdf"
    a.write_bytes(make_pdf([(200, 200)]))
    b.write_bytes(make_pdf([(300, 200)]))
    out_dir = tmp_path / "out"

    assert main([str(a), str(b), "--output-dir", str(out_dir), "--title-names"]) == 0

    outputs = sorted(out_dir.iterdir())
    assert len(outputs) == 2
    widths = set()
    for path in outputs:
        with fitz.open(path) as doc:
            widths.add(round(doc[0].rect.width))
    assert widths == {200, 300}


def test_same_title_does_not_overwrite(tmp_path):
    a = tmp_path / "a.pdf"
    b = tmp_path / "b.pdf"
    a.write_bytes(make_pdf([(200, 200)], title="Invoice"))
    b.write_bytes(make_pdf([(300, 200)], title="Invoice"))
    out_dir = tmp_path / "out"

    assert main([str(a), str(b), "--output-dir", str(out_dir), "--title-names"]) == 0

    assert sorted(p.name for p in out_dir.iterdir()) == ["Invoice.pdf", "Invoice_1.pdf"]
