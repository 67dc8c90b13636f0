# Friendly name for the wildfire to be analyzed
name = "Palisades"

# Analysis period. Pre and post fire scenes are picked from orbits inside this window
from_date = "2025-01-01"
to_date = "2025-01-13"

# Sentinel-2 SCL classes masked out: no data, saturated/defective, cloud shadows, water,
# unclassified, cloud medium/high probability, thin cirrus, snow/ice
excluded_classes = [0, 1, 3, 6, 7, 8, 9, 10, 11]

# RBR thresholds with base transparency and labels. Dimensions must match
bounds = [0.1, 0.27, 0.44, 0.66, float('inf')]
alphas = [0.0, 0.3, 0.5, 0.7, 1.0]
labels = ['Unburnt', 'Low Severity', 'Moderate Severity', 'Moderate-high Severity', 'High Severity']

# Moving average window applied to the NBR series of each sample
window_size = 3

# Mask pixels flagged as no data by the dataMask band
use_data_mask = False

# Path to directory of input data files (catalog.json and/or YYYYMMDD.npz sample files)
data_dir = 'data_files/'

# Path to directory where maps are written
result_dir = 'result/'

# Area covered by one pixel in km2 (Sentinel-2 20 m bands)
pixel_area_km2 = 0.0004
