"""
tube_identifier.py
Extracts the tube colors from a screenshot of a tube sorting game.

Samples the pixels around calibration points (one point per slot of each
tube, from the bottom to the top) and matches the sampled colors to a
palette using the CIE76 color difference, which could be used as input
to `tube_sorter.py` to solve the given game.

The calibration file is a JSON list with one entry per tube. An entry is
either a list of `[x, y]` slot points, or an object with the `bottom` and
`top` slot centers, in which case `capacity` evenly spaced points are
used.

Example run:
  $ python tube_identifier.py level.png points.json | python tube_sorter.py
  $ python tube_identifier.py -c 5 -b Gray level.png points.json
"""

# =============================================================================

import argparse
import json
import logging
import math
import sys
from pathlib import Path

from PIL import Image, ImageDraw

logger = logging.getLogger(__name__)

# =============================================================================

DEBUG = False

# =============================================================================

COLORS_FILE = Path('colors.json')

# the radius of the square of pixels averaged around each point
SAMPLE_RADIUS = 3
# colors closer than this are the same color when there is no palette
SAME_COLOR_DISTANCE = 20
# colors closer than this match a palette or background color
PALETTE_DISTANCE = 30
# the number of slots per tube for `bottom`/`top` calibration entries
DEFAULT_CAPACITY = 4

BACKGROUND = 'background'
# the palette color used for empty slots unless told otherwise
BACKGROUND_NAME = 'Background'

# =============================================================================


def _in_range(value, range_):
    return range_[0] <= value <= range_[1]


def read_colors_file(path=COLORS_FILE):
    """Reads the palette file, which maps color names to rgb values.
    Returns a dict from color name to rgb tuple.
    """
    palette = {}
    seen = set()
    data = json.loads(Path(path).read_bytes())
    for color, rgb in data.items():
        invalid_rgb_value_msg = f'invalid rgb value for color "{color}"'
        rgb = tuple(rgb)
        if len(rgb) != 3:
            raise ValueError(f'{invalid_rgb_value_msg}: not length 3')
        for val in rgb:
            if not isinstance(val, int):
                raise ValueError(f'{invalid_rgb_value_msg}: not ints')
            if not _in_range(val, (0, 255)):
                raise ValueError(
                    f'{invalid_rgb_value_msg}: not in range [0, 255]')
        if rgb in seen:
            raise ValueError(f'rgb value {rgb} is repeated in colors file')
        seen.add(rgb)
        palette[color] = rgb
    return palette


def write_colors_file(palette, path=COLORS_FILE):
    data = {color: list(rgb) for color, rgb in palette.items()}
    Path(path).write_text(json.dumps(data, indent=2), encoding='utf-8')


# =============================================================================


def avg_color(colors):
    avg = [0, 0, 0]
    if len(colors) == 0:
        return tuple(avg)
    for rgb in colors:
        for i in range(3):
            avg[i] += rgb[i]
    return tuple(round(val / len(colors)) for val in avg)


def _linearize(val):
    val /= 255
    if val > 0.04045:
        return ((val + 0.055) / 1.055) ** 2.4
    return val / 12.92


def _lab_f(t):
    if t > 0.008856:
        return t ** (1 / 3)
    return 7.787 * t + 16 / 116


def rgb_to_lab(rgb):
    """Converts an sRGB color to CIE Lab (D65 light, 2 degree observer)."""
    r, g, b = (_linearize(val) for val in rgb)
    x = (r * 0.4124 + g * 0.3576 + b * 0.1805) * 100 / 95.047
    y = (r * 0.2126 + g * 0.7152 + b * 0.0722) * 100 / 100.000
    z = (r * 0.0193 + g * 0.1192 + b * 0.9505) * 100 / 108.883
    fx, fy, fz = _lab_f(x), _lab_f(y), _lab_f(z)
    return (116 * fy - 16, 500 * (fx - fy), 200 * (fy - fz))


def color_distance(rgb1, rgb2):
    """The CIE76 color difference (Delta E) between two rgb colors."""
    return math.dist(rgb_to_lab(rgb1), rgb_to_lab(rgb2))


def match_color(rgb, palette, background=None, threshold=PALETTE_DISTANCE):
    """Matches the color to the background or a palette color.

    Returns `BACKGROUND`, the name of the closest palette color, or None
    if nothing is within `threshold`.
    """
    if background is not None:
        if color_distance(rgb, background) < threshold:
            return BACKGROUND
    best_name = None
    best_distance = threshold
    for name, palette_rgb in palette.items():
        distance = color_distance(rgb, palette_rgb)
        if distance < best_distance:
            best_name = name
            best_distance = distance
    return best_name


def map_colors_to_ids(colors, threshold=SAME_COLOR_DISTANCE):
    """Groups similar colors together.

    Returns a list with an id for each color, starting at 1 in order of
    appearance, and a list of the first color seen for each id.
    """
    ids = []
    unique_colors = []
    for rgb in colors:
        found = None
        best_distance = threshold
        for i, unique_rgb in enumerate(unique_colors):
            distance = color_distance(rgb, unique_rgb)
            if distance < best_distance:
                found = i
                best_distance = distance
        if found is None:
            unique_colors.append(rgb)
            found = len(unique_colors) - 1
        ids.append(found + 1)
    return ids, unique_colors


# =============================================================================


def load_image(filename):
    """Loads the given file image as an RGB image."""
    with Image.open(filename) as im:
        im.load()
    return im.convert('RGB')


def pixel_color(im, x, y, radius=SAMPLE_RADIUS):
    """Returns the average color of the square of pixels around (x, y),
    clipped to the image.
    """
    left = max(0, x - radius)
    top = max(0, y - radius)
    right = min(im.width, x + radius + 1)
    bottom = min(im.height, y + radius + 1)
    if right <= left or bottom <= top:
        return (0, 0, 0)
    pixels = im.load()
    return avg_color([
        pixels[c, r][:3]
        for r in range(top, bottom)
        for c in range(left, right)
    ])


def slot_points(bottom, top, capacity=DEFAULT_CAPACITY):
    """Returns `capacity` points evenly spaced from the bottom slot center
    to the top slot center.
    """
    if capacity == 1:
        return [tuple(bottom)]
    (x0, y0), (x1, y1) = bottom, top
    step = capacity - 1
    return [
        (round(x0 + (x1 - x0) * i / step), round(y0 + (y1 - y0) * i / step))
        for i in range(capacity)
    ]


def read_points_file(path, capacity=DEFAULT_CAPACITY):
    """Reads the calibration file into a list of slot points per tube."""
    sampling_points = []
    data = json.loads(Path(path).read_bytes())
    if not isinstance(data, list):
        raise ValueError('calibration file must hold a list of tubes')
    for i, entry in enumerate(data):
        if isinstance(entry, dict):
            try:
                points = slot_points(entry['bottom'], entry['top'],
                                     entry.get('capacity', capacity))
            except KeyError as e:
                raise ValueError(f'tube {i+1} is missing {e}') from e
            except (TypeError, ValueError) as e:
                raise ValueError(
                    f'tube {i+1} has invalid slot centers: {entry!r}') from e
        else:
            points = entry
        try:
            sampling_points.append([(int(x), int(y)) for x, y in points])
        except (TypeError, ValueError) as e:
            raise ValueError(
                f'tube {i+1} has invalid points: {entry!r}') from e
    return sampling_points


# =============================================================================


def show_samples(im, sampling_points, radius=SAMPLE_RADIUS):
    """Show the image with the sampled squares outlined.
    For debugging purposes.
    """
    im = im.copy()
    draw = ImageDraw.Draw(im)
    for points in sampling_points:
        for x, y in points:
            draw.rectangle(
                [x - radius, y - radius, x + radius, y + radius],
                outline=(255, 0, 0))
    im.show()


def sample_tubes(im, sampling_points, background=None,
                 radius=SAMPLE_RADIUS, threshold=PALETTE_DISTANCE):
    """Samples the color of every slot.

    Returns a list of the slot colors of each tube from the bottom up,
    leaving out slots that match the background. Points outside the
    image are skipped. Raises a ValueError if a color sits above an
    empty slot.
    """
    if im.mode != 'RGB':
        im = im.convert('RGB')
    all_tubes = []
    for i, points in enumerate(sampling_points):
        tube = []
        empty_slot = False
        for x, y in points:
            if not (0 <= x < im.width and 0 <= y < im.height):
                logger.debug('tube %d: point (%d, %d) is outside the image',
                             i + 1, x, y)
                continue
            rgb = pixel_color(im, x, y, radius)
            if (background is not None
                    and color_distance(rgb, background) < threshold):
                empty_slot = True
                continue
            if empty_slot:
                raise ValueError(
                    f'tube {i+1} has an empty space under a color')
            tube.append(rgb)
        all_tubes.append(tube)
    return all_tubes


def identify_tubes(im, sampling_points, palette=None, background=None,
                   radius=SAMPLE_RADIUS):
    """Identifies the colors in the tubes of the given image.

    With a palette, every slot color is matched to its closest palette
    color, and colors that match none are added to the palette under a
    new name. Without one, similar slot colors are grouped together.

    Returns the tubes as lists of color ids from 1, and a dict from id to
    the color's palette name (or rgb value, without a palette).
    """
    if DEBUG:
        show_samples(im, sampling_points, radius)

    tube_colors = sample_tubes(im, sampling_points, background, radius)

    if palette is None:
        ids, unique_colors = map_colors_to_ids(
            [rgb for tube in tube_colors for rgb in tube])
        ids = iter(ids)
        tubes = [[next(ids) for _ in tube] for tube in tube_colors]
        names = {i + 1: rgb for i, rgb in enumerate(unique_colors)}
        return tubes, names

    color_to_index = {}
    names = {}
    tubes = []
    for tube in tube_colors:
        ids = []
        for rgb in tube:
            name = match_color(rgb, palette)
            if name is None:
                name = _new_color_name(palette)
                logger.info('found new color %s: %s', name, rgb)
                palette[name] = rgb
            if name not in color_to_index:
                index = len(color_to_index) + 1
                color_to_index[name] = index
                names[index] = name
            ids.append(color_to_index[name])
        tubes.append(ids)
    return tubes, names


def _new_color_name(palette):
    i = 0
    while True:
        name = f'newColor{i}'
        if name not in palette:
            return name
        i += 1


# =============================================================================


def _parse_args(argv):
    parser = argparse.ArgumentParser(
        description='Reads the tube colors from a screenshot.')
    parser.add_argument('image', help='the screenshot')
    parser.add_argument('points', help='the calibration file')
    parser.add_argument('-c', '--capacity', type=int, default=DEFAULT_CAPACITY,
                        help='the number of slots per tube for entries given '
                             'by their bottom and top slots')
    parser.add_argument('-b', '--background', default=None,
                        help='the palette color of empty slots (default: '
                             f'{BACKGROUND_NAME}, if the palette has it)')
    parser.add_argument('--colors', type=Path, default=COLORS_FILE,
                        help='the palette file')
    return parser.parse_args(argv)


def main(argv=None):
    args = _parse_args(argv)

    if DEBUG:
        print('WARNING: debug mode is on, so the output cannot be used as '
              'input to `tube_sorter.py`')

    palette = read_colors_file(args.colors) if args.colors.exists() else {}
    if args.background is None:
        background = palette.get(BACKGROUND_NAME)
    elif args.background in palette:
        background = palette[args.background]
    else:
        print(f'Unknown background color: {args.background}')
        sys.exit(1)
    # the background is never a tube color
    colors = {
        name: rgb for name, rgb in palette.items() if rgb != background
    }

    im = load_image(args.image)
    try:
        sampling_points = read_points_file(args.points, args.capacity)
        tubes, names = identify_tubes(im, sampling_points, colors, background)
    except ValueError as e:
        print(e)
        sys.exit(1)

    if all(len(tube) == 0 for tube in tubes):
        print('Could not extract the colors from the screenshot')
        sys.exit(1)

    for tube in tubes:
        print(','.join(names[index] for index in tube))

    new_colors = {
        name: rgb for name, rgb in colors.items() if name not in palette
    }
    if len(new_colors) > 0:
        # write the new color names to the colors file
        palette.update(new_colors)
        write_colors_file(palette, args.colors)


if __name__ == '__main__':
    main()
