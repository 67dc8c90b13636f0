import os
import sys
import config as cfg
from severity import (SeverityConfig, SceneSelector, BurnSeverityEvaluator, load_scene_catalog,
                      load_scenes_from_dir, severity_summary, save_overlay, plot_burn_severity)

settings = SeverityConfig()

# Use the scene catalog if the platform dropped one, otherwise find scenes by file name date
catalog_path = os.path.join(cfg.data_dir, 'catalog.json')
try:
    if os.path.exists(catalog_path):
        scenes = load_scene_catalog(catalog_path)
    else:
        scenes = load_scenes_from_dir(cfg.data_dir)
except FileNotFoundError:
    sys.exit("No files found in the filepath specified by config.py")

# Earliest scene in the window is the pre fire scene, the latest one the post fire scene
selected = SceneSelector(settings).select(scenes)
if not selected:
    sys.exit("Fewer than two scenes between " + cfg.from_date + " and " + cfg.to_date + ". No analysis possible.")

pre_fire, post_fire = selected
print("Pre fire scene: " + str(pre_fire.date_from.date()))
print("Post fire scene: " + str(post_fire.date_from.date()))

try:
    pre_samples = pre_fire.load_samples()
    post_samples = post_fire.load_samples()
except (FileNotFoundError, ValueError) as e:
    sys.exit("Could not load samples for the selected scenes: " + str(e))

print("Calculating RBR...")
evaluator = BurnSeverityEvaluator(settings)
values = evaluator.relativized_burn_ratio(pre_samples, post_samples)
classes = evaluator.classifier.classify(values)
rgba = evaluator.colorize(values)

# Area per burn severity class
summary = severity_summary(classes, settings.labels, cfg.pixel_area_km2)
print("Burn severity for " + cfg.name)
for label, stats in summary.items():
    print(label + ": " + str(stats['pixels']) + " pixels, " + '{:.2f}'.format(stats['area_km2']) + " km2")

date = str(post_fire.date_from.date())
save_overlay(rgba, os.path.join(cfg.result_dir, 'RBR_overlay_' + cfg.name + '_' + date + '.png'))
plot_burn_severity(rgba, classes, post_fire.date_from, settings)
