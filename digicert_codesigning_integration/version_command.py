import pathlib

PRODUCT_NAME = 'DigiCert Signing Manager CI integration'
version_txt_path = pathlib.Path(__file__).resolve().parent.joinpath('support', 'version.txt')


def read_product_version():
    return version_txt_path.read_text(encoding='UTF-8').strip()


def main():
    print(f'{PRODUCT_NAME} {read_product_version()}')


if __name__ == '__main__':
    main()
