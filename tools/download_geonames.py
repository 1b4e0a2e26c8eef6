"""
Downloads the GeoNames extracts consumed by scripts/ingest.py.

Files land in the data directory under the names the ingestion looks for;
the V2 alternate-name archive is stored as ``alternateNames.zip``.
"""

import argparse
import pathlib
import urllib.request

# Define the base directory of the project (assuming this script is in tools/)
BASE_DIR = pathlib.Path(__file__).parent.parent.resolve()
DEFAULT_DATA_DIR = BASE_DIR / "data"

GEONAMES_DUMP_URL = "https://download.geonames.org/export/dump/"

# remote name -> local name
EXTRACTS = {
    "countryInfo.txt": "countryInfo.txt",
    "cities1000.zip": "cities1000.zip",
    "alternateNamesV2.zip": "alternateNames.zip",
}


def download_file_with_progress(url: str, dest: pathlib.Path, chunk_size: int = 1 << 16) -> None:
    """Stream ``url`` into ``dest``; a partial file is removed if the transfer fails."""
    req = urllib.request.Request(url, headers={"User-Agent": "geocity-downloader/1.0"})
    print(f"  Downloading {dest.name} from {url}...")
    try:
        with urllib.request.urlopen(req) as response, open(dest, "wb") as out_file:
            total_size_str = response.getheader("Content-Length")
            total_size = int(total_size_str) if total_size_str else None
            downloaded_size = 0

            while True:
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                out_file.write(chunk)
                downloaded_size += len(chunk)
                if total_size:
                    progress = (downloaded_size / total_size) * 100
                    print(f"\r    ... {progress:.1f}%", end="")
    except Exception:
        if dest.exists():
            dest.unlink()
        raise
    print(f"\n  ✔ Download complete: {dest}")


def download_extracts(data_dir: pathlib.Path, *, force: bool = False, base_url: str = GEONAMES_DUMP_URL) -> list[pathlib.Path]:
    """Fetch every extract missing from ``data_dir``; returns the paths downloaded."""
    data_dir.mkdir(parents=True, exist_ok=True)
    downloaded: list[pathlib.Path] = []
    for remote_name, local_name in EXTRACTS.items():
        dest_path = data_dir / local_name
        if dest_path.exists() and not force:
            print(f"  ✔ Skipping {dest_path.name} (already exists).")
            continue
        download_file_with_progress(base_url + remote_name, dest_path)
        downloaded.append(dest_path)
    return downloaded


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Download the GeoNames extracts.")
    parser.add_argument("--data-dir", type=pathlib.Path, default=DEFAULT_DATA_DIR)
    parser.add_argument("--force", action="store_true", help="Re-download files that already exist.")
    args = parser.parse_args(argv)

    print("--- Starting GeoNames download ---")
    try:
        download_extracts(args.data_dir, force=args.force)
    except OSError as exc:
        print(f"\n  ❌ FAILED: {exc}")
        return 1
    print("\n--- GeoNames download finished. ---")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
