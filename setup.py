from setuptools import setup

setup(name='pytilegram',
      version='0.1.0',
      description='Generate tilegrams: tile grid cartograms whose tile counts are proportional to a metric.',
      url='https://github.com/benmaier/pytilegram',
      author='Benjamin F. Maier',
      author_email='benjaminfrankmaier@gmail.com',
      license='MIT',
      packages=['pytilegram'],
      include_package_data = True,
      python_requires='>=3.9',
      install_requires=[
          'numpy',
          'scipy',
          'matplotlib>=3.5',
          'shapely>=2.0',
          'pandas',
          'geopandas',
          'progressbar2',
          'visvalingamwyatt',
      ],
      extras_require={
          'test': [
              'pytest',
          ],
      },
      dependency_links=[
          ],
      zip_safe=False)
