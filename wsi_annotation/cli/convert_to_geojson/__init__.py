import logging
from gettext import gettext as _
from pathlib import Path

logger = logging.getLogger(__name__)

COMMAND_DESCRIPTION = _("Convert an ASAP XML annotation file to GeoJSON")


def command(subparser):
    subparser.add_argument("input", type=Path, help=_("ASAP XML file"))
    subparser.add_argument(
        "output", type=Path, help=_("Where to save the GeoJSON file")
    )
    subparser.add_argument(
        "--overwrite",
        action="store_true",
        help=_("Overwrite GeoJSON file if it exists"),
    )

    def handle(args):
        from wsi_annotation.core.annotation import AnnotationSet
        from wsi_annotation.core.persistence import export_geojson, load_asap_xml

        if not args.overwrite and args.output.exists():
            logger.error(_("GeoJSON file exists, use --overwrite to ignore this"))
            return 1
        annotation_set = AnnotationSet()
        if not load_asap_xml(annotation_set, args.input):
            return 1
        args.output.parent.mkdir(exist_ok=True, parents=True)
        count = export_geojson(annotation_set, args.output)
        print(_("Exported {count} features").format(count=count))
        return 0

    return handle
