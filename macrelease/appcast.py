"""Sparkle appcast entry generation and feed document updates"""

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import markdown2  # type: ignore[import]
from lxml import etree  # type: ignore[import]

from .context import PipelineContext
from .errors import ConfigError, ReleaseError
from .models import AppcastEntry
from .package import sha256_file
from .signing import SIGNATURE_ATTRIBUTES, SigningKey

SPARKLE_NS = "http://www.andymatuschak.org/xml-namespaces/sparkle"
DC_NS = "http://purl.org/dc/elements/1.1/"
MACRELEASE_NS = "urn:macrelease:appcast:1"

NSMAP = {"sparkle": SPARKLE_NS, "dc": DC_NS, "macrelease": MACRELEASE_NS}

PUB_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S +0000"

MARKDOWN_EXTRAS = [
    "fenced-code-blocks",
    "tables",
    "strike",
    "target-blank-links",
    "task_list",
    "code-friendly",
]

FIRST_RELEASE_TEMPLATE = """<h2>{app_name} {version}</h2>
<p>This is the first notarized release of {app_name}, signed for secure distribution outside the Mac App Store.</p>
<ul>
    <li>Apple notarization for Gatekeeper compliance</li>
    <li>Developer ID signing with the hardened runtime</li>
    <li>Automatic updates</li>
</ul>"""

ROUTINE_RELEASE_TEMPLATE = """<h2>{app_name} {version}</h2>
<p>This update includes improvements and bug fixes.</p>
<ul>
    <li>General stability improvements</li>
    <li>Performance optimizations</li>
</ul>"""


def _sparkle(name: str) -> str:
    return f"{{{SPARKLE_NS}}}{name}"


def render_release_notes(
    app_name: str, version: str, notes_path: Optional[Path] = None, first_release: bool = False
) -> str:
    """HTML release notes; a caller-supplied document always wins over the template"""
    if notes_path is not None:
        if not notes_path.exists():
            raise ConfigError(f"Release notes not found: {notes_path}", stage="appcast")
        text = notes_path.read_text()
        if notes_path.suffix.lower() in (".html", ".htm"):
            return text
        return markdown2.markdown(text, extras=MARKDOWN_EXTRAS)
    template = FIRST_RELEASE_TEMPLATE if first_release else ROUTINE_RELEASE_TEMPLATE
    return template.format(app_name=app_name, version=version)


class AppcastFeed:
    """The appcast.xml document; entries are keyed by sparkle:version"""

    def __init__(self, path: Path, title: str = "Changelog"):
        self.path = path
        if path.exists():
            parser = etree.XMLParser(remove_blank_text=True)
            self.tree = etree.parse(str(path), parser)
        else:
            root = etree.Element("rss", nsmap=NSMAP)
            root.set("version", "2.0")
            channel = etree.SubElement(root, "channel")
            etree.SubElement(channel, "title").text = title
            etree.SubElement(channel, "description").text = f"{title} updates"
            etree.SubElement(channel, "language").text = "en"
            self.tree = etree.ElementTree(root)
        self._declare_namespaces()

        self.channel = self.tree.getroot().find("channel")
        if self.channel is None:
            raise ReleaseError(f"Could not find channel element in {path}", stage="appcast")

    def _declare_namespaces(self) -> None:
        """Declare our prefixes on the root so new items don't get ns0-style ones"""
        root = self.tree.getroot()
        if all(root.nsmap.get(prefix) == uri for prefix, uri in NSMAP.items()):
            return
        nsmap = dict(NSMAP)
        nsmap.update({k: v for k, v in root.nsmap.items() if k not in NSMAP})
        new_root = etree.Element(root.tag, attrib=dict(root.attrib), nsmap=nsmap)
        new_root.text = root.text
        for child in list(root):
            new_root.append(child)
        self.tree = etree.ElementTree(new_root)

    def items(self) -> List[etree._Element]:
        return self.channel.findall("item")

    @staticmethod
    def item_version(item: etree._Element) -> Optional[str]:
        version = item.findtext(_sparkle("version"))
        if version:
            return version.strip()
        enclosure = item.find("enclosure")
        if enclosure is not None:
            return enclosure.get(_sparkle("version"))
        return None

    def versions(self) -> List[str]:
        return [v for v in (self.item_version(item) for item in self.items()) if v]

    def find(self, version: str) -> Optional[etree._Element]:
        for item in self.items():
            if self.item_version(item) == version:
                return item
        return None

    def has_entries_besides(self, version: str) -> bool:
        return any(v != version for v in self.versions())

    def build_item(self, entry: AppcastEntry, link: Optional[str] = None) -> etree._Element:
        """Create the item inside the channel; upsert moves it into place"""
        item = etree.SubElement(self.channel, "item")
        etree.SubElement(item, "title").text = f"Version {entry.short_version or entry.version}"
        if link:
            etree.SubElement(item, "link").text = link
        etree.SubElement(item, _sparkle("version")).text = entry.version
        etree.SubElement(item, _sparkle("shortVersionString")).text = (
            entry.short_version or entry.version
        )
        if entry.minimum_system_version:
            etree.SubElement(item, _sparkle("minimumSystemVersion")).text = (
                entry.minimum_system_version
            )
        description = etree.SubElement(item, "description")
        description.text = etree.CDATA(entry.release_notes_html)
        etree.SubElement(item, "pubDate").text = entry.publication_date.strftime(PUB_DATE_FORMAT)

        checksum = etree.SubElement(item, f"{{{MACRELEASE_NS}}}checksum")
        checksum.set("algorithm", "sha256")
        checksum.text = entry.checksum

        enclosure = etree.SubElement(item, "enclosure")
        enclosure.set("url", entry.download_url)
        if entry.signature and entry.signature_scheme:
            enclosure.set(_sparkle(SIGNATURE_ATTRIBUTES[entry.signature_scheme]), entry.signature)
        enclosure.set("length", str(entry.file_size_bytes))
        enclosure.set("type", "application/octet-stream")
        return item

    def upsert(self, entry: AppcastEntry, link: Optional[str] = None) -> bool:
        """Replace the item for entry.version in place, or insert it first; True if replaced"""
        existing = self.find(entry.version)
        new_item = self.build_item(entry, link)
        if existing is not None:
            self.channel.replace(existing, new_item)
            return True

        # After the channel header elements, before the first item
        insert_index = 0
        for i, child in enumerate(self.channel):
            if child.tag == "item":
                break
            insert_index = i + 1
        self.channel.insert(insert_index, new_item)
        return False

    def write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.tree.write(str(self.path), encoding="utf-8", xml_declaration=True, pretty_print=True)


class AppcastGenerator:
    def __init__(self, context: PipelineContext):
        self.context = context
        self.feed_path = context.config.resolve_path("appcast_path")

    def load_feed(self) -> AppcastFeed:
        return AppcastFeed(self.feed_path, title=f"{self.context.app_name} Changelog")

    def download_url(self, version: str, artifact_path: Path) -> str:
        config = self.context.config
        values = {
            "version": version,
            "file_name": artifact_path.name,
            "app_name": self.context.app_name,
            "github_owner": config.get("github_owner"),
            "github_repo": config.get("github_repo"),
        }
        template = config["download_url_template"]
        missing = [key for key, value in values.items() if value is None and f"{{{key}}}" in template]
        if missing:
            raise ConfigError(
                f"download_url_template needs {', '.join(missing)}",
                stage="appcast",
                remediation="Set them in release.yaml or override download_url_template",
            )
        return template.format(**values)

    def is_first_signed_release(self, version: str, feed: AppcastFeed) -> bool:
        first = self.context.config.get("first_signed_version")
        if first:
            return str(first) == version
        return not feed.has_entries_besides(version)

    def generate(
        self,
        version: str,
        artifact_path: Path,
        signing_key: Optional[SigningKey] = None,
        notes_path: Optional[Path] = None,
        feed: Optional[AppcastFeed] = None,
    ) -> AppcastEntry:
        """Size, checksum and (optionally) signature of the artifact as a feed entry"""
        if not artifact_path.exists():
            raise ReleaseError(f"Release file not found: {artifact_path}", stage="appcast")
        feed = feed or self.load_feed()
        reporter = self.context.reporter

        size = artifact_path.stat().st_size
        checksum = sha256_file(artifact_path)

        signature = None
        scheme = None
        if signing_key is not None:
            signature = signing_key.sign(artifact_path, self.context.runner)
            scheme = signing_key.scheme
            reporter.success(f"Signed {artifact_path.name} ({scheme})")
        else:
            reporter.warning(
                "No signing key provided; the appcast entry will not be signed. "
                "Pass --signing-key to enable update verification."
            )

        notes = render_release_notes(
            self.context.app_name,
            version,
            notes_path,
            first_release=self.is_first_signed_release(version, feed),
        )
        return AppcastEntry(
            version=version,
            short_version=version,
            download_url=self.download_url(version, artifact_path),
            file_size_bytes=size,
            checksum=checksum,
            signature=signature,
            signature_scheme=scheme,
            release_notes_html=notes,
            publication_date=datetime.now(timezone.utc),
            minimum_system_version=self.context.config.get("minimum_system_version"),
        )

    def write_entry(self, entry: AppcastEntry, feed: Optional[AppcastFeed] = None) -> AppcastFeed:
        feed = feed or self.load_feed()
        replaced = feed.upsert(entry, link=self.context.config.get("website_url"))
        feed.write()
        verb = "Replaced" if replaced else "Added"
        self.context.reporter.success(f"{verb} v{entry.version} in {self.feed_path.name}")
        return feed
