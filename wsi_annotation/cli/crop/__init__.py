import logging
from gettext import gettext as _
from pathlib import Path

logger = logging.getLogger(__name__)

COMMAND_DESCRIPTION = _("Extract the annotations inside a region to a new file")


def command(subparser):
    subparser.add_argument("input", type=Path, help=_("ASAP XML file"))
    subparser.add_argument("output", type=Path, help=_("Where to save the crop"))
    subparser.add_argument(
        "--region",
        type=float,
        nargs=4,
        required=True,
        metavar=("X", "Y", "WIDTH", "HEIGHT"),
        help=_("Region in pixels"),
    )
    subparser.add_argument(
        "--clamp",
        action="store_true",
        help=_("Move coordinates outside the region onto its border"),
    )
    subparser.add_argument(
        "--overwrite",
        action="store_true",
        help=_("Overwrite output file if it exists"),
    )

    def handle(args):
        from wsi_annotation.core.annotation import AnnotationSet, Bounds
        from wsi_annotation.core.persistence import load_asap_xml, save_asap_xml

        if not args.overwrite and args.output.exists():
            logger.error(_("Output file exists, use --overwrite to ignore this"))
            return 1
        x, y, width, height = args.region
        if width <= 0 or height <= 0:
            logger.error(_("Region width and height must be positive"))
            return 1

        annotation_set = AnnotationSet()
        if not load_asap_xml(annotation_set, args.input):
            return 1
        subset = annotation_set.subset_for_area(
            Bounds(x, y, x + width, y + height), clamp=args.clamp
        )
        args.output.parent.mkdir(exist_ok=True, parents=True)
        save_asap_xml(subset, args.output)
        print(
            _("Kept {kept} of {total} annotations").format(
                kept=subset.active_annotation_count,
                total=annotation_set.active_annotation_count,
            )
        )
        return 0

    return handle
