import logging
from gettext import gettext as _
from pathlib import Path

logger = logging.getLogger(__name__)

COMMAND_DESCRIPTION = _("Convert an ASAP XML annotation file to COCO JSON")


def command(subparser):
    subparser.add_argument("input", type=Path, help=_("ASAP XML file"))
    subparser.add_argument(
        "output", type=Path, help=_("Where to save the COCO dataset JSON")
    )
    subparser.add_argument(
        "--overwrite",
        action="store_true",
        help=_("Overwrite JSON file if it exists"),
    )
    subparser.add_argument(
        "--description",
        type=str,
        help=_("Description for the COCO dataset"),
        default=_("Created with wsi_annotation"),
    )
    subparser.add_argument(
        "--image",
        type=str,
        default="",
        help=_("File name of the slide the annotations belong to"),
    )

    def handle(args):
        from wsi_annotation.core.annotation import AnnotationSet
        from wsi_annotation.core.persistence import load_asap_xml, save_coco

        if not args.overwrite and args.output.exists():
            logger.error(_("COCO file exists, use --overwrite to ignore this"))
            return 1
        annotation_set = AnnotationSet()
        if not load_asap_xml(annotation_set, args.input):
            return 1
        args.output.parent.mkdir(exist_ok=True, parents=True)
        save_coco(
            annotation_set,
            args.output,
            description=args.description,
            image_filename=args.image,
        )
        print(
            _("Exported {count} annotations").format(
                count=annotation_set.active_annotation_count
            )
        )
        return 0

    return handle
