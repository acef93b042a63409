from __future__ import annotations
import argparse, logging, pathlib, sys
from .config import load_config
from .errors import ExternalFailure
from .session import Session

def main(argv=None):
    p = argparse.ArgumentParser(description="keysmidi: session JSON / MIDI converter")
    p.add_argument("--in", dest="infile", required=True, help="Saved session (.json) or MIDI file (.mid)")
    p.add_argument("--out", dest="outfile", default=None, help="Output MIDI file (.mid)")
    p.add_argument("--json-out", dest="json_out", default=None, help="Write the session as JSON")
    p.add_argument("--config", dest="config", default=None, help="YAML config (defaults applied if omitted)")
    p.add_argument("--bpm", type=float, default=None, help="Override tempo before writing")
    p.add_argument("--quantize", action="store_true", help="Snap all note starts to the grid")
    p.add_argument("--info", action="store_true", help="Print track summary")
    p.add_argument("--verbose", "-v", action="store_true")

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    in_path = pathlib.Path(args.infile).expanduser().resolve()
    if not in_path.exists():
        print(f"[cli] ERROR: Input not found: {in_path}", file=sys.stderr)
        sys.exit(1)

    cfg = load_config(args.config)
    session = Session(config=cfg)
    print(f"[cli] infile = {in_path}")

    if in_path.suffix.lower() in (".mid", ".midi"):
        ok = session.import_midi(in_path)
    else:
        ok = session.load(in_path)
    if not ok:
        print(f"[cli] ERROR: cannot read {in_path} (see log)", file=sys.stderr)
        sys.exit(2)

    if args.bpm is not None:
        session.set_bpm(args.bpm)
    if args.quantize:
        session.editor.select_all()
        moved = session.editor.snap_selection_positions()
        session.editor.clear_selection()
        print(f"[cli] quantized {moved} notes (1/{session.snap.precision} beat)")

    if args.info:
        for t in session.tracks:
            prog = "drums" if session.catalog.is_percussion(t.instrument) else f"prog={session.catalog.program(t.instrument)}"
            print(f"[cli]   {t.instrument:<20} notes={len(t.notes):<5} {prog} end={t.end_beat:.3f}")

    wrote_anything = False
    try:
        if args.outfile:
            out = session.export_midi(pathlib.Path(args.outfile).expanduser().resolve())
            if out is None:
                print("[cli] WARNING: nothing to export (no notes).")
            else:
                print(f"[cli] midi -> {out}")
                wrote_anything = True
        if args.json_out:
            out = session.save(pathlib.Path(args.json_out).expanduser().resolve())
            print(f"[cli] json -> {out}")
            wrote_anything = True
    except ExternalFailure as e:
        print(f"[cli] ERROR: {e}", file=sys.stderr)
        sys.exit(3)

    if not wrote_anything and not args.info:
        print("[cli] WARNING: no output produced (use --out, --json-out or --info).")

    print(f"[cli] Done. tracks={len(session.tracks)} notes={session.store.total_note_count()} bpm={session.bpm:g}")
    return 0
