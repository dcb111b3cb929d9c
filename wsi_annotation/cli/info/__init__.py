import logging
from collections import Counter
from gettext import gettext as _
from pathlib import Path

from wsi_annotation.utils.misc import progress

logger = logging.getLogger(__name__)

COMMAND_DESCRIPTION = _("Show a summary of ASAP XML annotation files")


def command(subparser):
    subparser.add_argument(
        "files", type=Path, nargs="+", help=_("ASAP XML files to inspect")
    )
    subparser.add_argument(
        "--mpp",
        type=float,
        nargs=2,
        default=(1.0, 1.0),
        metavar=("X", "Y"),
        help=_("Microns per pixel of the slide"),
    )

    def handle(args):
        from wsi_annotation.core.annotation import AnnotationSet
        from wsi_annotation.core.persistence import load_asap_xml

        failures = 0
        for path in progress(args.files, desc=_("Reading annotation files...")):
            annotation_set = AnnotationSet(mpp=args.mpp)
            if not load_asap_xml(annotation_set, path):
                failures += 1
                continue

            per_group = Counter()
            per_type = Counter()
            total_area = 0.0
            for _index, annotation in annotation_set.iter_active():
                per_group[annotation_set.group_for(annotation).name] += 1
                per_type[annotation.type.name.lower()] += 1
                total_area += annotation.area

            print(
                _("{path}: {count} annotations, {groups} groups").format(
                    path=path,
                    count=annotation_set.active_annotation_count,
                    groups=annotation_set.active_group_count,
                )
            )
            for name, count in sorted(per_group.items()):
                print(f"  {_('group')} {name}: {count}")
            for name, count in sorted(per_type.items()):
                print(f"  {_('type')} {name}: {count}")
            print(f"  {_('total area')}: {total_area:.2f}")

        if failures:
            logger.error(
                _("{failures} file(s) could not be read").format(failures=failures)
            )
            return 1
        return 0

    return handle
