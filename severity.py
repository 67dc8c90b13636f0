import os
import re
import json
import math
import datetime
from dataclasses import dataclass
import numpy as np
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import config as cfg

# Bands the surrounding platform hands over for every scene
BANDS = ['B08', 'B12', 'SCL', 'dataMask']

TRANSPARENT = (0, 0, 0, 0)


def parse_date(value):
    '''
    Parses a catalog or config date into a timezone aware datetime. Dates without a
    timezone are taken as UTC.

    Args:
        value: ISO 8601 string (e.g. "2025-01-01" or "2025-01-02T10:21:33Z"), date or datetime

    Returns:
        A timezone aware datetime
    '''
    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, datetime.date):
        parsed = datetime.datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.datetime.fromisoformat(text)
        except ValueError:
            raise ValueError("Unrecognized date: " + str(value)) from None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _as_result(arr):
    # 0-d results go back to the caller as plain floats
    return float(arr) if arr.ndim == 0 else arr


def nbr(nir, swir):
    '''
    Calculates the Normalized Burn Ratio (NBR) as
    NBR = (NIR - SWIR)/(NIR + SWIR)

    Where NIR + SWIR is zero the index is undefined and NaN is returned.

    Args:
        nir: near infrared reflectance (B08), scalar or array
        swir: short wave infrared reflectance (B12), scalar or array

    Returns:
        NBR as a float for scalar input, otherwise an array
    '''
    nir = np.asarray(nir, dtype=np.float64)
    swir = np.asarray(swir, dtype=np.float64)
    total = nir + swir
    with np.errstate(divide='ignore', invalid='ignore'):
        result = np.where(total == 0, np.nan, (nir - swir) / total)
    return _as_result(result)


def rbr(dnbr, prefire_nbr):
    '''
    Calculates the Relativized Burn Ratio (RBR) as
    RBR = dNBR / sqrt(|NBR pre fire|)

    A pre fire NBR of zero gives NaN.
    '''
    dnbr = np.asarray(dnbr, dtype=np.float64)
    baseline = np.sqrt(np.abs(np.asarray(prefire_nbr, dtype=np.float64)))
    with np.errstate(divide='ignore', invalid='ignore'):
        result = np.where(baseline == 0, np.nan, dnbr / baseline)
    return _as_result(result)


def _check_window(window_size):
    if window_size < 1 or window_size % 2 == 0:
        raise ValueError("window_size must be a positive odd number, got " + str(window_size))


def smooth(values, window_size):
    '''
    Moving average over a sequence. Each output value is the mean of the inputs within
    window_size // 2 positions; windows are cut at the ends of the sequence, so the
    first and last values average fewer elements.

    Args:
        values: sequence of numbers
        window_size: width of the averaging window, a positive odd number

    Returns:
        A list of smoothed values, same length as the input
    '''
    _check_window(window_size)

    half = window_size // 2
    values = [float(v) for v in values]
    smoothed = []
    for i in range(len(values)):
        window = values[max(0, i - half):i + half + 1]
        smoothed.append(sum(window) / len(window))
    return smoothed


def heatmap_color(value):
    '''
    Maps RBR to a green (low) to red (high) color. Channels are rounded half up and
    clipped to 0-255, values outside [0, 1] are not rescaled.

    Args:
        value: RBR, a float or an array

    Returns:
        (red, green, blue) as ints for scalar input, (0, 0, 0) for a non-finite scalar,
        otherwise a tuple of arrays (NaN stays NaN)
    '''
    value = np.asarray(value, dtype=np.float64)
    if value.ndim == 0 and not np.isfinite(value):
        return 0, 0, 0

    red = np.clip(np.floor(value * 255 + 0.5), 0, 255)
    green = np.clip(np.floor((1 - value) * 255 + 0.5), 0, 255)
    blue = np.zeros_like(red)

    if value.ndim == 0:
        return int(red), int(green), 0
    return red, green, blue


def adjust_transparency(alpha):
    '''
    Squares the alpha so low severity classes fade more than high severity ones.
    '''
    return alpha ** 2


@dataclass(frozen=True)
class SeverityConfig:
    '''
    Read-only settings for a burn severity run. Defaults come from config.py.

    Attributes:
        from_date, to_date: analysis window, parsed into timezone aware datetimes
        excluded_classes: frozenset of SCL codes that are masked out
        bounds, alphas, labels: threshold table columns in ascending order
        window_size: odd moving average window for the NBR series
        use_data_mask: mask pixels where dataMask is 0
    '''

    from_date: object = cfg.from_date
    to_date: object = cfg.to_date
    excluded_classes: frozenset = frozenset(cfg.excluded_classes)
    bounds: tuple = tuple(cfg.bounds)
    alphas: tuple = tuple(cfg.alphas)
    labels: tuple = tuple(cfg.labels)
    window_size: int = cfg.window_size
    use_data_mask: bool = cfg.use_data_mask

    def __post_init__(self):
        """Validate and normalize configuration parameters."""
        bounds = tuple(float(b) for b in self.bounds)
        alphas = tuple(float(a) for a in self.alphas)
        labels = tuple(self.labels)

        if not len(bounds) == len(alphas) == len(labels):
            raise ValueError("bounds, alphas and labels must have the same length")
        if len(bounds) == 0:
            raise ValueError("At least one severity threshold is required")
        for lower, upper in zip(bounds, bounds[1:]):
            if not lower < upper:
                raise ValueError("Threshold bounds must be strictly ascending, got " + str(list(bounds)))
        if bounds[-1] != float('inf'):
            raise ValueError("The last threshold bound must be infinity so every RBR is classified")
        for alpha in alphas:
            if not 0.0 <= alpha <= 1.0:
                raise ValueError("Alpha values must be within [0, 1], got " + str(alpha))
        _check_window(self.window_size)

        from_date = parse_date(self.from_date)
        to_date = parse_date(self.to_date)
        if from_date > to_date:
            raise ValueError("from_date must not be after to_date")

        # frozen dataclass, fields are normalized in place
        object.__setattr__(self, 'from_date', from_date)
        object.__setattr__(self, 'to_date', to_date)
        object.__setattr__(self, 'excluded_classes', frozenset(self.excluded_classes))
        object.__setattr__(self, 'bounds', bounds)
        object.__setattr__(self, 'alphas', alphas)
        object.__setattr__(self, 'labels', labels)

    @property
    def thresholds(self):
        '''
        Returns: tuple of (max RBR, base alpha, label) rows in ascending order
        '''
        return tuple(zip(self.bounds, self.alphas, self.labels))


class Sample:
    '''
    Band values of one scene for one pixel, or for a whole raster when the values are
    equally shaped arrays.

    Attributes:
        nir: near infrared reflectance (B08)
        swir: short wave infrared reflectance (B12)
        scl: Scene Classification Layer code
        data_mask: 1 where the scene has data, 0 otherwise
    '''

    def __init__(self, nir, swir, scl, data_mask=1):
        self.nir = nir
        self.swir = swir
        self.scl = scl
        self.data_mask = data_mask

    @classmethod
    def from_record(cls, record):
        '''
        Builds a Sample from a platform record with keys B08, B12, SCL and dataMask.
        '''
        return cls(record['B08'], record['B12'], record['SCL'], record.get('dataMask', 1))

    def nbr(self):
        return nbr(self.nir, self.swir)

    def shapes(self):
        return [np.shape(self.nir), np.shape(self.swir), np.shape(self.scl), np.shape(self.data_mask)]


class Scene:
    '''
    One orbit of the scene catalog.

    Attributes:
        date_from: start of acquisition
        date_to: end of acquisition. Defaults to date_from
        file_path: path to the .npz file holding the scene's sample arrays, if any
    '''

    def __init__(self, date_from, date_to=None, file_path=None):
        self.date_from = parse_date(date_from)
        self.date_to = parse_date(date_to) if date_to is not None else self.date_from
        self.file_path = file_path

    def __repr__(self):
        return 'Scene({}, {})'.format(self.date_from.isoformat(), self.date_to.isoformat())

    def load_samples(self):
        '''
        Loads the band arrays of the scene into a Sample. The file must hold B08, B12
        and SCL arrays; dataMask is optional and defaults to all valid.

        Returns:
            A Sample holding arrays
        '''
        if self.file_path is None:
            raise ValueError("No sample file for " + repr(self))

        print("Loading samples for scene: " + self.file_path)

        with np.load(self.file_path) as data:
            missing = [band for band in BANDS[:3] if band not in data.files]
            if missing:
                raise ValueError("Missing bands " + str(missing) + " in " + self.file_path)

            nir = data['B08'].astype(np.float64)
            swir = data['B12'].astype(np.float64)
            scl = data['SCL'].astype(np.int16)
            if 'dataMask' in data.files:
                data_mask = data['dataMask'].astype(np.uint8)
            else:
                data_mask = np.ones(nir.shape, dtype=np.uint8)

        print('(height, width): ' + str(nir.shape))
        return Sample(nir, swir, scl, data_mask)


class SceneSelector:
    '''
    Picks the pre fire and post fire scene from a catalog.
    '''

    def __init__(self, config):
        self.config = config

    def filter(self, scenes):
        '''
        Returns the scenes acquired inside the analysis window, sorted by start date.
        The input list is left untouched.
        '''
        retained = [scene for scene in scenes
                    if scene.date_from >= self.config.from_date and scene.date_to <= self.config.to_date]
        return sorted(retained, key=lambda scene: scene.date_from)

    def select(self, scenes):
        '''
        Selects the earliest (pre fire) and latest (post fire) scene in the window.

        Returns:
            [pre_fire, post_fire], or an empty list if fewer than two scenes are available
        '''
        retained = self.filter(scenes)
        print("Scenes in analysis window: " + str(len(retained)) + " of " + str(len(scenes)))

        if len(retained) < 2:
            return []
        return [retained[0], retained[-1]]


class SeverityClassifier:
    '''
    Assigns burn severity classes by scanning the thresholds in ascending order; the
    first row with RBR <= max wins.
    '''

    def __init__(self, config):
        self.thresholds = config.thresholds

    def band(self, value):
        '''
        Returns: index of the severity class for a single RBR, or None if no row matches (NaN)
        '''
        for i, (max_rbr, _, _) in enumerate(self.thresholds):
            if value <= max_rbr:
                return i
        return None

    def alpha(self, value):
        i = self.band(value)
        return 0.0 if i is None else self.thresholds[i][1]

    def label(self, value):
        i = self.band(value)
        return None if i is None else self.thresholds[i][2]

    def classify(self, values):
        '''
        Classifies an array of RBR values.

        Args:
            values: RBR array, NaN where the pixel is invalid

        Returns:
            An int array of class indices, -1 for invalid pixels
        '''
        values = np.asarray(values, dtype=np.float64)
        classes = np.full(values.shape, -1, dtype=np.int8)
        for i, (max_rbr, _, _) in enumerate(self.thresholds):
            classes[(classes == -1) & (values <= max_rbr)] = i
        return classes

    def alphas(self, classes):
        # Trailing 0.0 is picked up by class -1
        lookup = np.array([alpha for _, alpha, _ in self.thresholds] + [0.0])
        return lookup[classes]


class BurnSeverityEvaluator:
    '''
    Turns a pre fire and a post fire sample into an RGBA burn severity pixel.

    Pixels are transparent (0, 0, 0, 0) when the sample count is not two, when either
    sample has an excluded SCL class (or no data with use_data_mask), or when NBR or
    RBR is undefined because of a zero denominator.
    '''

    def __init__(self, config=None):
        self.config = config if config is not None else SeverityConfig()
        self.classifier = SeverityClassifier(self.config)

    def is_masked(self, sample):
        if sample.scl in self.config.excluded_classes:
            return True
        return bool(self.config.use_data_mask and sample.data_mask == 0)

    def pixel_rbr(self, pre_fire, post_fire):
        pre_nbr = smooth([pre_fire.nbr()], self.config.window_size)[0]
        post_nbr = smooth([post_fire.nbr()], self.config.window_size)[0]
        return rbr(pre_nbr - post_nbr, pre_nbr)

    def evaluate_pixel(self, samples):
        '''
        Args:
            samples: sequence of Sample, pre fire first

        Returns:
            (red, green, blue, alpha) with int colors 0-255 and alpha 0-1
        '''
        if len(samples) != 2:
            return TRANSPARENT

        pre_fire, post_fire = samples
        if self.is_masked(pre_fire) or self.is_masked(post_fire):
            return TRANSPARENT

        value = self.pixel_rbr(pre_fire, post_fire)
        if not math.isfinite(value):
            return TRANSPARENT

        red, green, blue = heatmap_color(value)
        alpha = adjust_transparency(self.classifier.alpha(value))
        return red, green, blue, alpha

    def mask(self, sample):
        masked = np.isin(np.asarray(sample.scl), sorted(self.config.excluded_classes))
        if self.config.use_data_mask:
            masked |= np.asarray(sample.data_mask) == 0
        return masked

    def relativized_burn_ratio(self, pre_fire, post_fire):
        '''
        Calculates RBR for every pixel of two array Samples.

        Returns:
            RBR array, NaN where the pixel is masked or the ratio is undefined
        '''
        shapes = pre_fire.shapes() + post_fire.shapes()
        # dataMask may be left at its scalar default
        shapes = [shape for shape in shapes if shape != ()]
        if shapes and any(shape != shapes[0] for shape in shapes):
            raise ValueError("Input arrays must have the same shape")

        # Every pixel carries a one element NBR series, which smoothing returns unchanged
        pre_nbr = pre_fire.nbr()
        post_nbr = post_fire.nbr()
        value = np.asarray(rbr(pre_nbr - post_nbr, pre_nbr))

        invalid = self.mask(pre_fire) | self.mask(post_fire) | ~np.isfinite(value)
        return np.where(invalid, np.nan, value)

    def colorize(self, values):
        '''
        Maps an RBR array to RGBA.

        Returns:
            A (..., 4) float array with colors 0-255 and alpha 0-1. Invalid pixels are all zero
        '''
        values = np.asarray(values, dtype=np.float64)
        classes = self.classifier.classify(values)
        red, green, blue = heatmap_color(values)
        alpha = adjust_transparency(self.classifier.alphas(classes))

        rgba = np.stack([red, green, blue, alpha], axis=-1)
        rgba[classes == -1] = 0.0
        return rgba

    def evaluate_raster(self, pre_fire, post_fire):
        return self.colorize(self.relativized_burn_ratio(pre_fire, post_fire))


def to_display(rgba):
    '''
    Scales the color channels of an RGBA raster to [0, 1] for matplotlib.
    '''
    display = np.array(rgba, dtype=np.float64)
    display[..., :3] /= 255.0
    return display


def severity_summary(classes, labels, pixel_area_km2=cfg.pixel_area_km2):
    '''
    Counts pixels and area per severity class. Invalid pixels (-1) are not counted.

    Args:
        classes: class index array from SeverityClassifier.classify
        labels: class labels in threshold order
        pixel_area_km2: area of one pixel in km2

    Returns:
        Dict of label -> {'pixels': count, 'area_km2': area}
    '''
    classes = np.asarray(classes)
    summary = {}
    for i, label in enumerate(labels):
        count = int(np.count_nonzero(classes == i))
        summary[label] = {'pixels': count, 'area_km2': count * pixel_area_km2}
    return summary


def legend_colors(config):
    '''
    Returns the overlay color of each severity class as an RGBA tuple in [0, 1]. The
    color is taken at the class upper bound, capped at 1.
    '''
    colors = []
    for max_rbr, alpha, _ in config.thresholds:
        red, green, blue = heatmap_color(min(max_rbr, 1.0))
        colors.append((red / 255, green / 255, blue / 255, adjust_transparency(alpha)))
    return colors


def generate_handles(labels, colors, edge='k', alpha=None):
    '''
    Generates a list of matplot Rectangle handles for the legend.

    Args:
        labels: list of label names
        colors: list of colors
        edge: edge color. Defaults to k.
        alpha: blending value, 0-1. Defaults to the alpha of each color.

    Returns:
        A list of handles
    '''
    lc = len(colors)  # get the length of the color list
    handles = []
    for i in range(len(labels)):
        handles.append(mpatches.Rectangle((0, 0), 1, 1, facecolor=colors[i % lc], edgecolor=edge, alpha=alpha))
    return handles


def _date_label(date):
    return date.strftime('%Y-%m-%d') if hasattr(date, 'strftime') else str(date)


def save_overlay(rgba, path):
    '''
    Writes the bare RGBA overlay as a PNG, ready to be draped over a base map.

    Returns:
        The path written to
    '''
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    plt.imsave(path, to_display(rgba))
    return path


def plot_burn_severity(rgba, classes, date, config, out_dir=cfg.result_dir, name=cfg.name,
                       pixel_area_km2=cfg.pixel_area_km2, dpi=300):
    '''
    Plots a burn severity map with a legend and a table of area per severity class and
    saves it to file (out_dir is created if needed).

    Args:
        rgba: overlay from BurnSeverityEvaluator.colorize
        classes: class index array for the same pixels
        date: post fire date used in title and file name
        config: the SeverityConfig the overlay was made with
        out_dir: directory to write to
        name: friendly name of the fire
        pixel_area_km2: area of one pixel in km2
        dpi: resolution of the saved figure

    Returns:
        Path of the saved map
    '''
    print("Creating burn severity plot...")

    labels = config.labels
    colors = legend_colors(config)

    fig, ax = plt.subplots(1, 1, figsize=(12, 10))
    ax.set_title("Burn severity map with RBR, " + name + ", " + _date_label(date), fontsize=16)

    # Legend
    handles = generate_handles(labels, colors)
    ax.legend(handles, labels, fontsize=10, loc='lower left', framealpha=1)

    ax.imshow(to_display(rgba))

    # Table with area per burn severity
    summary = severity_summary(classes, labels, pixel_area_km2)
    area_2d = np.reshape(['{:.2f}'.format(summary[label]['area_km2']) for label in labels], (-1, 1))
    ax.table(cellText=area_2d, rowLabels=labels, rowColours=colors, colLabels=['Area (km2)'], loc='bottom',
             colWidths=[0.1], cellLoc='left')
    fig.subplots_adjust(bottom=0.2)

    if not os.path.exists(out_dir):
        os.makedirs(out_dir)
    path = os.path.join(out_dir, 'RBR_' + name + '_' + _date_label(date) + '.png')
    fig.savefig(path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return path


def load_scene_catalog(path):
    '''
    Reads a scene catalog from a JSON file. Accepted layouts are a Sentinel Hub style
    {"scenes": {"orbits": [...]}}, {"orbits": [...]} or a bare list of orbits. Each orbit
    needs dateFrom and dateTo and may name its sample file under "file", relative to the
    catalog.

    Returns:
        List of Scene objects in catalog order
    '''
    with open(path) as f:
        catalog = json.load(f)

    if isinstance(catalog, list):
        orbits = catalog
    elif 'scenes' in catalog:
        orbits = catalog['scenes'].get('orbits', [])
    else:
        orbits = catalog.get('orbits')
    if orbits is None:
        raise ValueError("No orbits found in " + path)

    base_dir = os.path.dirname(path)
    scenes = []
    for orbit in orbits:
        if 'dateFrom' not in orbit or 'dateTo' not in orbit:
            raise ValueError("Orbit without dateFrom/dateTo in " + path + ": " + str(orbit))
        file_path = orbit.get('file')
        if file_path is not None:
            file_path = os.path.join(base_dir, file_path)
        scenes.append(Scene(orbit['dateFrom'], orbit['dateTo'], file_path))

    return scenes


def load_scenes_from_dir(data_dir):
    '''
    Creates a Scene for every .npz sample file in data_dir whose name holds an 8 digit
    date (YYYYMMDD).

    Returns:
        List of Scene objects
    '''
    scenes = []
    for f in sorted(os.listdir(data_dir)):
        if f.endswith('.npz'):
            match = re.search(r'\d{4}\d{2}\d{2}', f)
            if bool(match):
                date = datetime.datetime.strptime(match.group(), '%Y%m%d')
                scenes.append(Scene(date, date, os.path.join(data_dir, f)))

    return scenes
