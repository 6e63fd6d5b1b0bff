import logging
from typing import Dict, List, Union

from lxml import etree  # Using lxml for robust parsing and namespace handling

from sitemap_watch.exceptions import ParseError

logger = logging.getLogger(__name__)

# Elements are matched by local name so sitemaps that omit the
# namespace declaration parse the same as compliant ones.
_INDEX_LOCS = "./*[local-name()='sitemap']/*[local-name()='loc']"
_URLSET_LOCS = "./*[local-name()='url']/*[local-name()='loc']"
_ANY_INDEX_LOCS = "//*[local-name()='sitemap']/*[local-name()='loc']"
_ANY_URLSET_LOCS = "//*[local-name()='url']/*[local-name()='loc']"


class SitemapParser:
    def parse_sitemap(self, xml_content: Union[str, bytes], sitemap_url: str = "") -> Dict[str, Union[str, List[str]]]:
        """
        Parses the given XML sitemap content.

        Determines if it's a sitemap index or a URL set and extracts the
        <loc> values in document order.

        Args:
            xml_content: The XML content of the sitemap (bytes preferred).
            sitemap_url: The URL from which this sitemap was fetched (for logging/context).

        Returns:
            A dictionary with:
                'type': 'sitemapindex' or 'urlset'
                'urls': sub-sitemap URLs (for sitemapindex) or page URLs (for urlset).

        Raises:
            ParseError: empty content, malformed XML, or neither shape found.
        """
        if not xml_content:
            raise ParseError(f"Cannot parse empty XML content (from {sitemap_url}).")

        if isinstance(xml_content, str):
            # lxml refuses str input carrying an encoding declaration
            xml_content = xml_content.encode('utf-8')

        try:
            parser = etree.XMLParser(
                # Strict: a malformed document yields nothing rather than half a URL list
                recover=False,
                remove_blank_text=True,
                resolve_entities=False,
                no_network=True,
            )
            root = etree.fromstring(xml_content.lstrip(), parser=parser)
        except etree.XMLSyntaxError as e:
            raise ParseError(f"XML syntax error in sitemap from {sitemap_url}: {e}") from e

        if root is None:
            raise ParseError(f"No XML document found in sitemap from {sitemap_url}.")

        root_tag_name = etree.QName(root.tag).localname

        if root_tag_name == 'sitemapindex':
            logger.debug(f"Parsing as sitemap index: {sitemap_url}")
            return {"type": "sitemapindex", "urls": self._extract_locs(root, _INDEX_LOCS)}
        if root_tag_name == 'urlset':
            logger.debug(f"Parsing as URL set: {sitemap_url}")
            return {"type": "urlset", "urls": self._extract_locs(root, _URLSET_LOCS)}

        logger.warning(
            f"Unknown root tag '{root.tag}' in sitemap from {sitemap_url}. Attempting to find URLs."
        )
        # Fallback: look for sitemap or url entries anywhere in the tree
        if root.xpath(_ANY_INDEX_LOCS):
            return {"type": "sitemapindex", "urls": self._extract_locs(root, _ANY_INDEX_LOCS)}
        if root.xpath(_ANY_URLSET_LOCS):
            return {"type": "urlset", "urls": self._extract_locs(root, _ANY_URLSET_LOCS)}

        raise ParseError(f"Unknown root element '{root.tag}' and no sitemap/url tags found in {sitemap_url}.")

    def _extract_locs(self, root_element: etree._Element, xpath: str) -> List[str]:
        """Collects stripped <loc> texts, skipping empty ones."""
        locs = []
        for loc_element in root_element.xpath(xpath):
            text = (loc_element.text or "").strip()
            if not text:
                # An entry without a <loc> value is invalid per the sitemap protocol
                logger.warning("Skipping sitemap entry with empty <loc> tag.")
                continue
            locs.append(text)
        logger.debug(f"Extracted {len(locs)} <loc> values.")
        return locs
